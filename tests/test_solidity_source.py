"""Tests for Solidity source preprocessing."""

import json

from taxguard.data.preprocessing.solidity_source import (
    clean_code,
    extract_functions,
    extract_state_variables,
    flatten_etherscan_source,
    parameter_names,
    parse_source,
    strip_comments,
)


class TestCommentAndStringBlanking:
    """Test suite for comment and string-literal blanking."""

    def test_strip_comments_keeps_length_and_lines(self):
        code = "uint a; // setFee here\n/* block\n comment */ uint b;"
        stripped = strip_comments(code)

        assert len(stripped) == len(code)
        assert stripped.count("\n") == code.count("\n")
        assert "setFee" not in stripped
        assert "uint b;" in stripped

    def test_comment_markers_inside_strings_survive(self):
        code = 'string s = "http://example.com"; // gone'
        stripped = strip_comments(code)

        assert '"http://example.com"' in stripped
        assert "gone" not in stripped

    def test_clean_code_blanks_string_contents(self):
        code = 'require(x, "sellFee too high");'
        cleaned = clean_code(code)

        assert "sellFee" not in cleaned
        assert len(cleaned) == len(code)
        assert cleaned.startswith('require(x, "')


class TestFunctionExtraction:
    """Test suite for function, modifier and constructor extraction."""

    def test_extracts_functions_with_modifiers_and_parameters(self, honey_source):
        functions = {f.name: f for f in extract_functions(honey_source)}

        assert set(functions) == {"onlyOwner", "constructor", "setSellFee", "_transfer"}
        setter = functions["setSellFee"]
        assert setter.kind == "function"
        assert "onlyOwner" in setter.modifiers
        assert setter.parameters == ["newFee"]
        assert setter.start_line == 24
        assert setter.contract == "HoneyToken"
        assert "sellFee = newFee" in setter.body

    def test_view_functions_are_flagged(self, plain_source):
        functions = {f.name: f for f in extract_functions(plain_source)}

        assert functions["balanceOf"].is_view
        assert not functions["transfer"].is_view

    def test_interface_declarations_have_no_body(self):
        code = """
        interface IERC20 {
            function transfer(address to, uint256 amount) external returns (bool);
        }
        """
        functions = extract_functions(code)

        assert len(functions) == 1
        assert not functions[0].has_body
        assert functions[0].contract == "IERC20"

    def test_member_receive_call_is_not_a_definition(self):
        code = """
        contract A {
            function pay(address target) external {
                IPayee(target).receive(1);
            }
        }
        """
        names = [f.name for f in extract_functions(code)]

        assert names == ["pay"]

    def test_unbalanced_braces_return_partial_body(self):
        code = "contract T { function f(uint a) public { if (a > 1) { a = 2; "
        functions = extract_functions(code)

        assert [f.name for f in functions] == ["f"]
        assert functions[0].body == " if (a > 1) { a = 2; "

    def test_truncated_source_still_parses(self, honey_source):
        truncated = honey_source[:honey_source.index("_balances[_owner] += fee;")]
        source = parse_source(truncated)

        assert "setSellFee" in [f.name for f in source.functions]
        assert "_transfer" in [f.name for f in source.functions]

    def test_calls_inside_bodies_are_not_definitions(self):
        code = """
        contract A {
            function outer() public {
                inner();
            }
            function inner() internal {}
        }
        """
        names = [f.name for f in extract_functions(code)]

        assert names == ["outer", "inner"]

    def test_parameter_names_skip_unnamed(self):
        assert parameter_names("address to, uint256 amount") == ["to", "amount"]
        assert parameter_names("uint256, bool") == []
        assert parameter_names("string memory name") == ["name"]
        assert parameter_names("bytes calldata") == []


class TestStateVariables:
    """Test suite for state variable discovery."""

    def test_state_variables_with_initializers(self, honey_source):
        variables = extract_state_variables(honey_source)

        assert variables["buyFee"] == "5"
        assert variables["sellFee"] == "5"
        assert variables["uniswapV2Pair"] is None
        assert "_isExcludedFromFee" in variables
        # locals inside functions are not state variables
        assert "fee" not in variables

    def test_parse_source_collects_structure(self, honey_source):
        source = parse_source(honey_source)

        assert source.pragma == "^0.8.0"
        assert source.contracts == ["HoneyToken"]
        assert source.functions_named("setSellFee")
        assert source.line_of(source.code.index("function _transfer")) == 28

    def test_function_at_returns_enclosing_function(self, honey_source):
        source = parse_source(honey_source)
        offset = source.code.index("_balances[_owner] += fee")

        assert source.function_at(offset).name == "_transfer"
        assert source.function_at(0) is None


class TestEtherscanFlattening:
    """Test suite for Etherscan SourceCode payload flattening."""

    def test_plain_source_is_unchanged(self, plain_source):
        assert flatten_etherscan_source(plain_source) == plain_source

    def test_multi_file_payload(self):
        payload = json.dumps({
            "contracts/Token.sol": {"content": "contract Token {}"},
            "contracts/Ownable.sol": {"content": "contract Ownable {}"},
        })
        flat = flatten_etherscan_source(payload)

        assert "// File: contracts/Token.sol" in flat
        assert "contract Ownable {}" in flat

    def test_standard_json_payload_with_double_braces(self):
        inner = json.dumps({
            "language": "Solidity",
            "sources": {"Token.sol": {"content": "contract Token { uint256 public taxFee = 5; }"}},
        })
        flat = flatten_etherscan_source("{" + inner + "}")

        assert "uint256 public taxFee = 5;" in flat
        assert "language" not in flat
