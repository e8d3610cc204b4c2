"""
DynamoDB utility functions: lazy clients, paginated reads, batch writes and
TransactWriteItems builders.

Every multi-row mutation in the platform is one transact_write() call. The
ConditionExpression on each operation re-checks the row at commit time, so a
check made on an earlier read can never be acted on after it went stale.
"""
import re
import boto3
from typing import List, Dict, Any, Optional, Iterable
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from .config import config
from .logging import logger

# DynamoDB allows at most 100 operations per transaction
MAX_TRANSACT_ITEMS = 100

_PLACEHOLDER_NAME = re.compile(r'#(\w+)')

_dynamodb = None
_client = None
_serializer = TypeSerializer()


class TransactionConflict(Exception):
    """A TransactWriteItems call was cancelled, usually by a failed condition."""

    def __init__(self, reasons: List[str]):
        super().__init__(f"Transaction cancelled: {reasons}")
        self.reasons = reasons

    def failed_at(self, index: int) -> bool:
        """True when the operation at `index` failed its condition check."""
        return index < len(self.reasons) and self.reasons[index] == 'ConditionalCheckFailed'


def get_dynamodb():
    """Get or create the DynamoDB resource."""
    global _dynamodb
    if _dynamodb is None:
        _dynamodb = boto3.resource('dynamodb', region_name=config.AWS_REGION)
    return _dynamodb


def get_client():
    """
    Low-level client used for transactions. Operations are built already
    serialized, so this must not be the resource's own client, which would
    serialize them a second time.
    """
    global _client
    if _client is None:
        _client = boto3.client('dynamodb', region_name=config.AWS_REGION)
    return _client


def reset_clients() -> None:
    """Drop cached clients (tests recreate them inside the AWS mock)."""
    global _dynamodb, _client
    _dynamodb = None
    _client = None


def get_table(table_name: str):
    return get_dynamodb().Table(table_name)


def serialize(value: Any) -> Dict[str, Any]:
    return _serializer.serialize(value)


def serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: serialize(v) for k, v in item.items() if v is not None}


# =============================================================================
# Reads
# =============================================================================

def get_item(table_name: str, key: Dict[str, Any], consistent: bool = True) -> Optional[Dict[str, Any]]:
    """Get a single item from DynamoDB."""
    response = get_table(table_name).get_item(Key=key, ConsistentRead=consistent)
    return response.get('Item')


def batch_get_items(table_name: str, key_name: str, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """
    Fetch many items by primary key. Handles the 100-key batch limit and
    unprocessed keys.

    Returns:
        Mapping of key value -> item for the items that exist
    """
    unique_ids = list(dict.fromkeys(ids))
    found = {}
    dynamodb = get_dynamodb()

    for i in range(0, len(unique_ids), 100):
        request = {
            table_name: {
                'Keys': [{key_name: item_id} for item_id in unique_ids[i:i + 100]],
                'ConsistentRead': True,
            }
        }
        while request:
            response = dynamodb.batch_get_item(RequestItems=request)
            for item in response.get('Responses', {}).get(table_name, []):
                found[item[key_name]] = item
            request = response.get('UnprocessedKeys') or None

    return found


def query(
    table_name: str,
    index_name: Optional[str] = None,
    key_condition: Optional[Any] = None,
    filter_expression: Optional[Any] = None,
    limit: Optional[int] = None,
    scan_forward: bool = True
) -> List[Dict[str, Any]]:
    """
    Query DynamoDB table or index, following pagination.

    Args:
        table_name: Name of the DynamoDB table
        index_name: Optional GSI name
        key_condition: Key condition expression
        filter_expression: Optional filter expression
        limit: Max items to return
        scan_forward: True for ascending, False for descending

    Returns:
        List of items matching the query
    """
    table = get_table(table_name)

    query_params = {
        'ScanIndexForward': scan_forward
    }

    if index_name:
        query_params['IndexName'] = index_name
    if key_condition is not None:
        query_params['KeyConditionExpression'] = key_condition
    if filter_expression is not None:
        query_params['FilterExpression'] = filter_expression

    items = []
    while True:
        response = table.query(**query_params)
        items.extend(response.get('Items', []))
        if limit and len(items) >= limit:
            return items[:limit]
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            return items
        query_params['ExclusiveStartKey'] = last_key


def scan(
    table_name: str,
    filter_expression: Optional[Any] = None,
    limit: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    Scan a table, following pagination until `limit` matching items are found.
    In production the hot scans (stale leases, pending submissions) should move
    to sparse GSIs.
    """
    table = get_table(table_name)
    scan_params = {}
    if filter_expression is not None:
        scan_params['FilterExpression'] = filter_expression

    items = []
    while True:
        response = table.scan(**scan_params)
        items.extend(response.get('Items', []))
        if limit and len(items) >= limit:
            return items[:limit]
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            return items
        scan_params['ExclusiveStartKey'] = last_key


# =============================================================================
# Writes
# =============================================================================

def _attach_expressions(
    op: Dict[str, Any],
    expressions: List[Optional[str]],
    values: Dict[str, Any]
) -> Dict[str, Any]:
    """Attach only the placeholders the expressions use; DynamoDB rejects unused ones."""
    text = ' '.join(expr for expr in expressions if expr)
    names = {f'#{name}': name for name in _PLACEHOLDER_NAME.findall(text)}
    if names:
        op['ExpressionAttributeNames'] = names
    if values:
        op['ExpressionAttributeValues'] = {k: serialize(v) for k, v in values.items()}
    return op


def update_op(
    table_name: str,
    key: Dict[str, Any],
    set_fields: Optional[Dict[str, Any]] = None,
    remove: Optional[List[str]] = None,
    add: Optional[Dict[str, int]] = None,
    condition: Optional[str] = None,
    condition_values: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Build an 'Update' transaction operation.

    Attribute names are always referenced through '#name' placeholders
    (status, text and comments are DynamoDB reserved words). Condition
    expressions use the same '#name' form and their own ':value' names.
    """
    clauses = []
    values = dict(condition_values or {})

    if set_fields:
        clauses.append('SET ' + ', '.join(f'#{name} = :set_{name}' for name in set_fields))
        values.update({f':set_{name}': value for name, value in set_fields.items()})
    if remove:
        clauses.append('REMOVE ' + ', '.join(f'#{name}' for name in remove))
    if add:
        clauses.append('ADD ' + ', '.join(f'#{name} :add_{name}' for name in add))
        values.update({f':add_{name}': value for name, value in add.items()})

    op = {
        'TableName': table_name,
        'Key': serialize_item(key),
        'UpdateExpression': ' '.join(clauses),
    }
    if condition:
        op['ConditionExpression'] = condition
    return {'Update': _attach_expressions(op, [op['UpdateExpression'], condition], values)}


def put_op(
    table_name: str,
    item: Dict[str, Any],
    condition: Optional[str] = None,
    condition_values: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Build a 'Put' transaction operation."""
    op = {'TableName': table_name, 'Item': serialize_item(item)}
    if condition:
        op['ConditionExpression'] = condition
        _attach_expressions(op, [condition], dict(condition_values or {}))
    return {'Put': op}


def delete_op(
    table_name: str,
    key: Dict[str, Any],
    condition: Optional[str] = None,
    condition_values: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Build a 'Delete' transaction operation."""
    op = {'TableName': table_name, 'Key': serialize_item(key)}
    if condition:
        op['ConditionExpression'] = condition
        _attach_expressions(op, [condition], dict(condition_values or {}))
    return {'Delete': op}


def condition_check_op(
    table_name: str,
    key: Dict[str, Any],
    condition: str,
    condition_values: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Build a 'ConditionCheck' operation: asserts on a row the transaction does not write."""
    op = {'TableName': table_name, 'Key': serialize_item(key), 'ConditionExpression': condition}
    return {'ConditionCheck': _attach_expressions(op, [condition], dict(condition_values or {}))}


def transact_write(operations: List[Dict[str, Any]]) -> None:
    """
    Execute operations atomically.

    Raises:
        TransactionConflict: the transaction was cancelled (a condition failed
            or another transaction touched the same rows)
        ClientError: any other DynamoDB failure
    """
    if not operations:
        return
    if len(operations) > MAX_TRANSACT_ITEMS:
        raise ValueError(f"Transaction has {len(operations)} operations, limit is {MAX_TRANSACT_ITEMS}")

    try:
        get_client().transact_write_items(TransactItems=operations)
    except ClientError as e:
        if e.response['Error']['Code'] in ('TransactionCanceledException', 'TransactionConflictException'):
            reasons = [r.get('Code', 'None') for r in e.response.get('CancellationReasons', [])]
            logger.info(f"Transaction cancelled: {reasons}")
            raise TransactionConflict(reasons) from e
        logger.error(f"Transaction failed: {e}")
        raise
