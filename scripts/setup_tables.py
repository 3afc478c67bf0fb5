"""Creates (or deletes) the DynamoDB tables of the inventory network.

Usage:
    python scripts/setup_tables.py                      # create missing tables
    python scripts/setup_tables.py --delete             # delete every table
    python scripts/setup_tables.py --region eu-west-1   # different region
    python scripts/setup_tables.py --prefix staging-    # table name prefix
"""

import logging
import sys

from botocore.exceptions import ClientError

from inventory_network.config import configure_logging, get_settings
from inventory_network.storage.dynamodb import TABLE_NAMES, create_tables, get_dynamodb_resource

logger = logging.getLogger("setup_tables")


def delete_tables(dynamodb, table_prefix: str) -> None:
    for name in TABLE_NAMES:
        full_name = f"{table_prefix}{name}"
        try:
            dynamodb.Table(full_name).delete()
            logger.info("Table deleted: %s", full_name)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceNotFoundException":
                logger.info("Table not found: %s", full_name)
            else:
                raise


def main(argv=None) -> int:
    settings = get_settings()
    configure_logging(settings)

    region = settings.region_name
    prefix = settings.table_prefix
    delete_mode = False

    args = sys.argv[1:] if argv is None else argv
    for i, arg in enumerate(args):
        if arg == "--delete":
            delete_mode = True
        elif arg == "--region" and i + 1 < len(args):
            region = args[i + 1]
        elif arg == "--prefix" and i + 1 < len(args):
            prefix = args[i + 1]

    dynamodb = get_dynamodb_resource(region)
    if delete_mode:
        delete_tables(dynamodb, prefix)
        return 0

    created = create_tables(dynamodb, table_prefix=prefix)
    logger.info("%d table(s) created in %s", len(created), region)
    return 0


if __name__ == "__main__":
    sys.exit(main())
