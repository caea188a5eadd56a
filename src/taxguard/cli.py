"""Command-line interface for taxguard.

Usage:
    taxguard scan PATH... [--address 0x...] [--model PATH] [--json] [--min-score N] [--fail-above N]
    taxguard checklist PATH
    taxguard features PATH... [--output CSV]
    taxguard train [--corpus DIR] [--labels CSV] [--synthetic N] [--model-type T] [--output DIR]
    taxguard generate-corpus OUTPUT_DIR [--n N] [--seed S]
    taxguard serve [--host H] [--port P]

``scan`` exits 0 when every contract scores below the fail threshold, 1 when
at least one reaches it, and 2 when input cannot be read.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from taxguard import __version__
from taxguard.config import DetectorConfig, load_config

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FLAGGED = 1
EXIT_INPUT_ERROR = 2


def _load_records(args: argparse.Namespace, config: DetectorConfig):
    from taxguard.data.loaders.contract_loader import EtherscanLoader, load_paths

    records = load_paths(args.paths) if args.paths else []
    addresses = getattr(args, 'address', None) or []
    if addresses:
        loader = EtherscanLoader(config.etherscan_api_key, config.etherscan_api_url)
        records.extend(asyncio.run(loader.fetch_many(addresses)))
    return records


def cmd_scan(args: argparse.Namespace, config: DetectorConfig) -> int:
    from taxguard.analyzer import TaxAbuseAnalyzer

    if args.model:
        config.model_path = args.model
    fail_above = args.fail_above if args.fail_above is not None else config.fail_above

    records = _load_records(args, config)
    if not records:
        print("ERROR: no contracts to scan", file=sys.stderr)
        return EXIT_INPUT_ERROR

    analyzer = TaxAbuseAnalyzer(config)
    reports = [analyzer.analyze_record(record) for record in records]
    shown = [r for r in reports if r.risk_score >= args.min_score]

    if args.json:
        print(json.dumps([r.to_dict() for r in shown], indent=2, default=str))
    else:
        for report in shown:
            risk = report.risk
            print(f"{risk.risk_score:>3}  {risk.label.value:<20} {report.name}")
            for factor in risk.risk_factors:
                print(f"       - {factor}")
        print(f"\nScanned {len(reports)} contract(s) with {analyzer.model_info()['model_type']} model")

    flagged = [r for r in reports if r.risk_score >= fail_above]
    return EXIT_FLAGGED if flagged else EXIT_OK


def cmd_checklist(args: argparse.Namespace, config: DetectorConfig) -> int:
    from taxguard.data.loaders.contract_loader import load_paths
    from taxguard.models.security.audit_checklist import render_checklist, run_checklist

    records = load_paths([args.path])
    if not records:
        print(f"ERROR: no contracts found in {args.path}", file=sys.stderr)
        return EXIT_INPUT_ERROR

    for record in records:
        report = run_checklist(record.code)
        if args.json:
            print(json.dumps(report.to_dict(), indent=2))
        else:
            print(f"== {record.name}")
            print(render_checklist(report))
    return EXIT_OK


def cmd_features(args: argparse.Namespace, config: DetectorConfig) -> int:
    from taxguard.data.features.tax_features import build_feature_frame
    from taxguard.data.loaders.contract_loader import load_paths

    frame = build_feature_frame(load_paths(args.paths))
    if args.output:
        frame.to_csv(args.output, index=False)
        print(f"Features for {len(frame)} contract(s) written to {args.output}")
    else:
        print(frame.to_csv(index=False), end='')
    return EXIT_OK


def cmd_train(args: argparse.Namespace, config: DetectorConfig) -> int:
    from taxguard.training.train_tax_abuse import TaxAbuseTrainingPipeline

    pipeline = TaxAbuseTrainingPipeline({
        'corpus_dir': args.corpus,
        'labels_csv': args.labels,
        'n_synthetic': args.synthetic,
        'seed': args.seed,
        'model_type': args.model_type or config.model_type,
        'model_output_dir': args.output,
        'registry_dir': config.registry_dir,
    })
    results = pipeline.run_training()
    metrics = results['metrics']

    print(f"Trained on {results['n_contracts']} contracts")
    print(f"  accuracy={metrics['accuracy']:.3f} precision={metrics['precision']:.3f} "
          f"recall={metrics['recall']:.3f} f1={metrics['f1_score']:.3f}")
    print(f"  Model:  {results['artifacts']['model']}")
    print(f"  Report: {results['artifacts']['report']}")
    return EXIT_OK


def cmd_generate_corpus(args: argparse.Namespace, config: DetectorConfig) -> int:
    from taxguard.data.loaders.synthetic_corpus import generate_corpus, write_corpus

    paths = write_corpus(generate_corpus(args.n, seed=args.seed), args.output_dir)
    print(f"Wrote {len(paths)} contracts to {args.output_dir}")
    return EXIT_OK


def cmd_serve(args: argparse.Namespace, config: DetectorConfig) -> int:
    from taxguard.inference import model_server

    model_server.config = config
    model_server.run(host=args.host, port=args.port)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taxguard",
        description="Static detection of token tax abuse in Solidity contracts",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default=None, help="JSON config file")
    parser.add_argument("--log-level", default=None, help="Logging level (default from config)")
    sub = parser.add_subparsers(dest="command")

    scan = sub.add_parser("scan", help="Score contracts for tax abuse")
    scan.add_argument("paths", nargs="*", help=".sol/.json files or directories")
    scan.add_argument("--address", action="append", help="Fetch verified source from Etherscan")
    scan.add_argument("--model", default=None, help="Trained model artifact")
    scan.add_argument("--json", action="store_true", help="Print full reports as JSON")
    scan.add_argument("--min-score", type=int, default=0, help="Only show contracts at or above this score")
    scan.add_argument("--fail-above", type=int, default=None,
                      help="Exit 1 when a contract reaches this score (default 61)")

    checklist = sub.add_parser("checklist", help="Run the audit checklist on a contract file or directory")
    checklist.add_argument("path")
    checklist.add_argument("--json", action="store_true")

    features = sub.add_parser("features", help="Extract static features")
    features.add_argument("paths", nargs="+")
    features.add_argument("--output", default=None, help="CSV output path")

    train = sub.add_parser("train", help="Train the tax abuse detector")
    train.add_argument("--corpus", default=None, help="Directory of labeled contracts")
    train.add_argument("--labels", default=None, help="Labeled CSV manifest")
    train.add_argument("--synthetic", type=int, default=300,
                       help="Synthetic contracts to generate when no corpus is given")
    train.add_argument("--seed", type=int, default=42)
    train.add_argument("--model-type", choices=["random_forest", "gradient_boosting"], default=None)
    train.add_argument("--output", default="./trained_models")

    gen = sub.add_parser("generate-corpus", help="Write a synthetic labeled corpus")
    gen.add_argument("output_dir")
    gen.add_argument("--n", type=int, default=200)
    gen.add_argument("--seed", type=int, default=42)

    serve = sub.add_parser("serve", help="Run the analysis server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_OK

    from taxguard.data.loaders.contract_loader import ContractSourceError

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        print(f"ERROR: invalid config: {e}", file=sys.stderr)
        return EXIT_INPUT_ERROR

    logging.basicConfig(
        level=getattr(logging, (args.log_level or config.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    dispatch = {
        "scan": cmd_scan,
        "checklist": cmd_checklist,
        "features": cmd_features,
        "train": cmd_train,
        "generate-corpus": cmd_generate_corpus,
        "serve": cmd_serve,
    }

    try:
        return dispatch[args.command](args, config)
    except (OSError, ContractSourceError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_INPUT_ERROR


if __name__ == "__main__":
    sys.exit(main())
