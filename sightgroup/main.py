"""
Main entry point for the sighting re-identification system.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from loguru import logger

from .features.vision_describer import VisionDescriber
from .features.vision_matcher import VisionMatcher
from .reid.sighting_resolver import SightingResolver
from .reid.sqlite_repository import SQLiteGroupRepository
from .reid_config import merge_config


def setup_logging(config: dict) -> None:
    """Configure logging based on config."""
    log_config = config["logging"]
    logger.remove()  # Remove default handler

    # Add console handler
    logger.add(
        sys.stderr,
        level=log_config["level"],
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
               "<level>{message}</level>"
    )

    # Add file handler if output directory exists
    output_dir = Path(log_config["output_dir"])
    if output_dir.exists():
        logger.add(
            output_dir / "sightgroup_{time}.log",
            rotation="1 day",
            retention="7 days",
            level=log_config["level"]
        )


def load_config(config_path: Optional[str]) -> dict:
    """Load configuration from YAML file, filling gaps from the defaults."""
    if config_path is None:
        return merge_config()
    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}
    return merge_config(config)


def read_image(path: str) -> bytes:
    return Path(path).read_bytes()


def print_json(model) -> None:
    print(json.dumps(model.model_dump(mode="json"), indent=2, ensure_ascii=False))


def run_command(args: argparse.Namespace, config: dict) -> int:
    describer = VisionDescriber(config["describer"])
    matcher = None
    if config["matcher"].get("enabled") or args.command == "vision-compare":
        matcher = VisionMatcher(config["matcher"])
    repository = SQLiteGroupRepository(config)
    resolver = SightingResolver(describer, repository, config, matcher=matcher)

    try:
        if args.command == "compare":
            judgment = resolver.compare_photos(read_image(args.image_a), read_image(args.image_b))
            print_json(judgment)
            verdict = "SAME PERSON" if judgment.same_person else "DIFFERENT PEOPLE"
            print(f"\n{verdict} ({judgment.probability}%)")
        elif args.command == "vision-compare":
            match = resolver.vision_compare_photos(read_image(args.image_a), read_image(args.image_b))
            if match is None:
                print("Vision comparison failed")
                return 2
            print_json(match)
        elif args.command == "assign":
            outcome = resolver.resolve(read_image(args.image), image_ref=str(Path(args.image).resolve()))
            print_json(outcome)
            if outcome.status == "unclear":
                return 2
        elif args.command == "neighbors":
            for neighbor in resolver.neighbors(read_image(args.image), limit=args.limit):
                print_json(neighbor)
        elif args.command == "groups":
            for group in repository.list_groups():
                print(f"{group.identifier or group.group_id}: {group.member_count} sighting(s), "
                      f"clarity {group.canonical_clarity}, representative {group.representative_image}")
    finally:
        describer.cleanup()
        if matcher is not None:
            matcher.cleanup()
        repository.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Person sighting grouping from structured photo descriptions"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (defaults are used when omitted)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    compare = subparsers.add_parser("compare", help="Judge whether two photos show the same person")
    compare.add_argument("image_a", type=str)
    compare.add_argument("image_b", type=str)

    vision_compare = subparsers.add_parser(
        "vision-compare", help="Ask the vision model directly whether two photos show the same person"
    )
    vision_compare.add_argument("image_a", type=str)
    vision_compare.add_argument("image_b", type=str)

    assign = subparsers.add_parser("assign", help="Store a photo as a sighting of a new or existing group")
    assign.add_argument("image", type=str)

    neighbors = subparsers.add_parser("neighbors", help="List the stored groups closest to a photo")
    neighbors.add_argument("image", type=str)
    neighbors.add_argument("--limit", type=int, default=3)

    subparsers.add_parser("groups", help="List stored groups")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Load configuration
    config = load_config(args.config)

    # Setup logging
    setup_logging(config)

    logger.debug(f"Running command: {args.command}")
    return run_command(args, config)


if __name__ == "__main__":
    sys.exit(main())
