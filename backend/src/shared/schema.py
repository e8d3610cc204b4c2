"""
DynamoDB table definitions.

Used to bootstrap local and test environments; the deployed stack declares
the same keys and indexes.
"""
from typing import Any, Dict, List, Tuple
from .config import config as default_config
from .logging import logger

# Index names referenced by the store
STATUS_INDEX = 'StatusIndex'
WORKER_INDEX = 'WorkerIndex'
WORK_ITEM_INDEX = 'WorkItemIndex'


def _index(name: str, hash_key: str, range_key: str) -> Dict[str, Any]:
    return {
        'IndexName': name,
        'KeySchema': [
            {'AttributeName': hash_key, 'KeyType': 'HASH'},
            {'AttributeName': range_key, 'KeyType': 'RANGE'},
        ],
        'Projection': {'ProjectionType': 'ALL'},
    }


def table_definitions(settings=None) -> List[Dict[str, Any]]:
    """CreateTable arguments for every platform table."""
    settings = settings or default_config

    specs: List[Tuple[str, str, List[Tuple[str, str]], List[Dict[str, Any]]]] = [
        (
            settings.WORK_ITEMS_TABLE, 'workItemId',
            [('status', 'S'), ('createdAt', 'N')],
            [_index(STATUS_INDEX, 'status', 'createdAt')],
        ),
        (
            settings.LEASES_TABLE, 'leaseId',
            [('workerId', 'S'), ('workItemId', 'S'), ('createdAt', 'N')],
            [
                _index(WORKER_INDEX, 'workerId', 'createdAt'),
                _index(WORK_ITEM_INDEX, 'workItemId', 'createdAt'),
            ],
        ),
        (
            settings.SUBMISSIONS_TABLE, 'submissionId',
            [('workerId', 'S'), ('workItemId', 'S'), ('createdAt', 'N')],
            [
                _index(WORKER_INDEX, 'workerId', 'createdAt'),
                _index(WORK_ITEM_INDEX, 'workItemId', 'createdAt'),
            ],
        ),
        # Keyed by submissionId: at most one review per submission
        (settings.REVIEWS_TABLE, 'submissionId', [], []),
        (
            settings.LEDGER_TABLE, 'entryId',
            [('workerId', 'S'), ('createdAt', 'N')],
            [_index(WORKER_INDEX, 'workerId', 'createdAt')],
        ),
        (settings.WORKERS_TABLE, 'workerId', [], []),
        (settings.RATE_PLANS_TABLE, 'ratePlanId', [], []),
        (
            settings.PAYMENTS_TABLE, 'paymentId',
            [('workerId', 'S'), ('createdAt', 'N')],
            [_index(WORKER_INDEX, 'workerId', 'createdAt')],
        ),
    ]

    definitions = []
    for table_name, key_name, attributes, indexes in specs:
        definition = {
            'TableName': table_name,
            'KeySchema': [{'AttributeName': key_name, 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': key_name, 'AttributeType': 'S'}] + [
                {'AttributeName': name, 'AttributeType': attr_type} for name, attr_type in attributes
            ],
            'BillingMode': 'PAY_PER_REQUEST',
        }
        if indexes:
            definition['GlobalSecondaryIndexes'] = indexes
        definitions.append(definition)
    return definitions


def create_tables(dynamodb, settings=None) -> List[str]:
    """Create any missing tables. Returns the names created."""
    existing = {table.name for table in dynamodb.tables.all()}
    created = []
    for definition in table_definitions(settings):
        if definition['TableName'] in existing:
            continue
        table = dynamodb.create_table(**definition)
        table.wait_until_exists()
        created.append(definition['TableName'])
        logger.info(f"Created table {definition['TableName']}")
    return created
