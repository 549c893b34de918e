#!/usr/bin/env python3
"""
Run a preprocessing task or export a trained classifier.

    python run_preprocessing.py preprocess tth.yaml --environment production
    python run_preprocessing.py export --parameters output/tth_transforms.json \
        --network-file output/tth_network.json --dumps net_*.txt --name tth_classifier
"""

import argparse
import json
import sys

# Add src to path for imports
sys.path.append('src')

from hepnet.network.model_export import ExportConfig, ModelExporter, load_networks
from hepnet.preprocessing import HepnetError, Transform, create_preprocessing_pipeline, setup_preprocessing_logging
from hepnet.preprocessing.utils.logging import get_pipeline_logger, preprocessing_session


def run_preprocess(args) -> int:
    pipeline = create_preprocessing_pipeline(args.config, environment=args.environment)
    setup_preprocessing_logging(**pipeline.config.logging_options())

    logger = get_pipeline_logger("hepnet.cli")

    print(f"🔄 Running preprocessing task '{pipeline.config.task_name}'...")
    with preprocessing_session(logger, pipeline.config.task_name, environment=args.environment):
        result = pipeline.run()

    print("\n✅ PREPROCESSING COMPLETE")
    print("=" * 50)
    print(f"📋 Events in training set: {result['n_events']}")
    for label, count in result['class_counts'].items():
        print(f"  class {label}: {count} events")

    print("\n📊 Stage Performance:")
    for stage, duration in result['stage_durations'].items():
        print(f"  {stage}: {duration:.2f}s")

    print("\n💾 Outputs:")
    for name, path in result['output_paths'].items():
        print(f"  {name}: {path}")

    return 0


def run_export(args) -> int:
    setup_preprocessing_logging(level=args.log_level, log_format="text", enable_file=False)

    with open(args.parameters) as f:
        transforms = [Transform.from_dict(item) for item in json.load(f)['transforms']]

    with open(args.network_file) as f:
        architecture = json.load(f)['architecture']

    networks = load_networks(args.dumps, architecture)

    exporter = ModelExporter(ExportConfig(output_dir=args.output_dir))
    result = exporter.export(transforms, networks, args.name)

    print(f"✅ Classifier written to {result.module_path}")
    print(f"💾 Parameters saved to {result.parameters_path}")
    print(f"🎯 Probes reproduced exactly: {result.validation.probes_checked}")

    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="hepnet training-set preprocessing and classifier export",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    preprocess = subparsers.add_parser("preprocess", help="Build the training set and fit the transformations")
    preprocess.add_argument("config", help="YAML task file")
    preprocess.add_argument("--environment", default="development",
                            choices=["development", "staging", "production", "testing"],
                            help="Configuration environment")
    preprocess.set_defaults(handler=run_preprocess)

    export = subparsers.add_parser("export", help="Render transformations and trained networks as Python code")
    export.add_argument("--parameters", required=True, help="Transform parameters written by 'preprocess'")
    export.add_argument("--network-file", required=True, help="Network description written by 'preprocess'")
    export.add_argument("--dumps", nargs="+", required=True, help="Parameter dumps of the network ensemble")
    export.add_argument("--name", required=True, help="Name of the generated module")
    export.add_argument("--output-dir", default="exports", help="Output directory")
    export.add_argument("--log-level", default="INFO", help="Log level")
    export.set_defaults(handler=run_export)

    args = parser.parse_args()

    try:
        return args.handler(args)
    except (HepnetError, OSError) as e:
        print(f"\n❌ FAILED: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
