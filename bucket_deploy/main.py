"""
Main entry point for the bucket deploy command.
"""
import argparse
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from . import __version__
from .exceptions import DeployError
from .models.config import DEFAULT_CONFIG_FILE, DeployConfig
from .services.deployer import Deployer


CONSOLE_FORMAT = ("<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
                  "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>")
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None):
    """Configure logging for the deploy command."""
    # Remove default logger
    logger.remove()

    level = "INFO"
    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "WARNING"

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation="10 MB",
            retention="7 days",
            format=FILE_FORMAT,
            level="DEBUG"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bucket-deploy",
        description=("Deploy a local directory to an S3 bucket, uploading only what changed, "
                     "deleting what is gone and invalidating CloudFront.")
    )
    parser.add_argument("--bucket", help="destination bucket name")
    parser.add_argument("--key", help="access key ID")
    parser.add_argument("--secret", help="secret access key")
    parser.add_argument("--region", help="bucket region")
    parser.add_argument("--endpoint-url", help="endpoint of an S3 compatible service")
    parser.add_argument("--path", help="optional bucket sub path")
    parser.add_argument("--source", help="path of files to upload (default: .)")
    parser.add_argument("--config", help=f"optional config file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("--max-delete", type=int,
                        help="maximum number of files to delete per deploy (default: 256)")
    parser.add_argument("--acl", help="canned ACL sent with every upload, e.g. private or public-read")
    parser.add_argument("--public-access", action="store_true", default=None,
                        help="deprecated: use --acl public-read")
    parser.add_argument("--force", action="store_true", default=None, help="upload all files")
    parser.add_argument("--try", dest="try_run", action="store_true", default=None,
                        help="trial run, no remote updates")
    parser.add_argument("--ignore", help="regexp pattern for ignoring files")
    parser.add_argument("--distribution-id", action="append", dest="distribution_ids",
                        help="CloudFront distribution ID to invalidate, may be repeated")
    parser.add_argument("--workers", type=int, help="number of upload workers (default: CPU count)")
    parser.add_argument("--skip-local-files", help="regexp of local files to skip")
    parser.add_argument("--skip-local-dirs", help="regexp of local directories to skip")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable verbose logging")
    parser.add_argument("--quiet", action="store_true", help="only log warnings and errors")
    parser.add_argument("--log-file", help="also write a debug log to this file")
    parser.add_argument("-V", "--version", action="store_true", help="print version and exit")
    return parser


def build_config(args: argparse.Namespace) -> DeployConfig:
    """Combine environment, flags and the YAML file into one configuration."""
    config = DeployConfig.from_env()
    config.apply_overrides(
        s3_bucket=args.bucket,
        s3_access_key=args.key,
        s3_secret_key=args.secret,
        s3_region=args.region,
        s3_endpoint=args.endpoint_url,
        bucket_path=args.path,
        source_path=args.source,
        config_file=args.config,
        max_delete=args.max_delete,
        acl=args.acl,
        public_access=args.public_access,
        force=args.force,
        try_run=args.try_run,
        ignore=args.ignore,
        distribution_ids=args.distribution_ids,
        workers=args.workers,
        skip_local_files=args.skip_local_files,
        skip_local_dirs=args.skip_local_dirs
    )
    config.load_file_config()
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point, returns the process exit status."""
    args = build_parser().parse_args(argv)

    if args.version:
        print(f"bucket-deploy {__version__}")
        return 0

    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    try:
        config = build_config(args)
        stats = Deployer(config).deploy()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down")
        return 1
    except DeployError as e:
        if e.stats is not None:
            logger.info(e.stats.summary())
        logger.error(f"Command failed: {e}")
        return 1

    logger.info(stats.summary())
    return 0


if __name__ == "__main__":
    sys.exit(main())
