"""DynamoDB-backed record table used by the cache store."""
import logging
from typing import Any, Dict, Generic, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar, Union

import boto3
from boto3.dynamodb.conditions import Attr, ConditionBase
from botocore.exceptions import ClientError

from storage.serialization import item_to_record, record_to_item, to_dynamo

logger = logging.getLogger(__name__)

T = TypeVar('T')

OrderBy = Union[str, Sequence[Tuple[str, bool]]]


class DynamoDBTable(Generic[T]):
    """
    Record table with find/create/update/upsert/delete/count operations.

    Filters are boto3 condition expressions built from
    ``boto3.dynamodb.conditions.Attr``. Ordering, limit and offset are
    applied after the scan since DynamoDB scans are unordered.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, table_name: str, model: Type[T], key_fields: Sequence[str],
                 dynamodb=None):
        """
        Initialize table reference.

        Args:
            table_name: Name of the DynamoDB table
            model: Record dataclass stored in the table
            key_fields: Hash key name, followed by the range key name if any
            dynamodb: Optional boto3 DynamoDB resource to share
        """
        self.table_name = table_name
        self.model = model
        self.key_fields = tuple(key_fields)
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.debug(f"Initialized DynamoDBTable for table: {table_name}")

    @property
    def hash_key(self) -> str:
        return self.key_fields[0]

    def _scan(self, condition: Optional[ConditionBase] = None, **kwargs) -> Iterator[Dict[str, Any]]:
        """Scan the table following LastEvaluatedKey pagination."""
        if condition is not None:
            kwargs['FilterExpression'] = condition

        response = self.table.scan(**kwargs)
        yield from response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = self.table.scan(
                ExclusiveStartKey=response['LastEvaluatedKey'],
                **kwargs
            )
            yield from response.get('Items', [])

    def _to_record(self, item: Dict[str, Any]) -> Optional[T]:
        try:
            return item_to_record(self.model, item)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(
                f"Failed to convert item from {self.table_name} "
                f"to {self.model.__name__}: {e}"
            )
            return None

    def key_of(self, record: T) -> Dict[str, Any]:
        return {name: getattr(record, name) for name in self.key_fields}

    def find_many(self, condition: Optional[ConditionBase] = None,
                  order_by: Optional[OrderBy] = None, limit: Optional[int] = None,
                  offset: int = 0) -> List[T]:
        """
        Find records matching a filter.

        Args:
            condition: Filter expression, or None for every record
            order_by: Attribute name (ascending) or list of
                (attribute, descending) pairs, most significant first
            limit: Maximum number of records to return
            offset: Number of matching records to skip

        Returns:
            List of records
        """
        try:
            records = [
                record for record in map(self._to_record, self._scan(condition))
                if record is not None
            ]
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table {self.table_name}: {e}")
            raise

        if order_by:
            if isinstance(order_by, str):
                order_by = [(order_by, False)]
            # Stable sorts applied least significant key first
            for attribute, descending in reversed(list(order_by)):
                records.sort(
                    key=lambda r, a=attribute: (getattr(r, a) is None, getattr(r, a)),
                    reverse=descending
                )

        end = offset + limit if limit is not None else None
        return records[offset:end]

    def find_first(self, condition: Optional[ConditionBase] = None,
                   order_by: Optional[OrderBy] = None) -> Optional[T]:
        records = self.find_many(condition, order_by=order_by, limit=1)
        return records[0] if records else None

    def find_unique(self, key: Dict[str, Any]) -> Optional[T]:
        """Fetch a single record by its primary key."""
        response = self.table.get_item(
            Key={name: to_dynamo(value) for name, value in key.items()}
        )
        item = response.get('Item')
        return self._to_record(item) if item else None

    def create(self, record: T, condition: Optional[ConditionBase] = None) -> T:
        """
        Insert a new record.

        Args:
            record: Record to insert
            condition: Write condition; defaults to "key does not exist yet"

        Raises:
            ClientError: ConditionalCheckFailedException if the condition fails
        """
        if condition is None:
            condition = Attr(self.hash_key).not_exists()
        self.table.put_item(
            Item=record_to_item(record),
            ConditionExpression=condition
        )
        return record

    def _update_expression(self, set_fields: Dict[str, Any],
                           create_fields: Dict[str, Any]) -> Dict[str, Any]:
        names = {}
        values = {}
        set_clauses = []
        remove_clauses = []

        def placeholder(field_name):
            token = f"#f{len(names)}"
            names[token] = field_name
            return token

        for field_name, value in set_fields.items():
            token = placeholder(field_name)
            if value is None:
                remove_clauses.append(token)
                continue
            values[f":v{len(values)}"] = to_dynamo(value)
            set_clauses.append(f"{token} = :v{len(values) - 1}")

        for field_name, value in create_fields.items():
            if value is None or field_name in set_fields:
                continue
            token = placeholder(field_name)
            values[f":v{len(values)}"] = to_dynamo(value)
            set_clauses.append(
                f"{token} = if_not_exists({token}, :v{len(values) - 1})"
            )

        expression = ''
        if set_clauses:
            expression += 'SET ' + ', '.join(set_clauses)
        if remove_clauses:
            expression += ' REMOVE ' + ', '.join(remove_clauses)

        params = {
            'UpdateExpression': expression.strip(),
            'ExpressionAttributeNames': names,
        }
        if values:
            params['ExpressionAttributeValues'] = values
        return params

    def update(self, key: Dict[str, Any], fields: Dict[str, Any]) -> T:
        """
        Update attributes of an existing record.

        Raises:
            ClientError: ConditionalCheckFailedException if the record is missing
        """
        fields = {k: v for k, v in fields.items() if k not in self.key_fields}
        response = self.table.update_item(
            Key={name: to_dynamo(value) for name, value in key.items()},
            ConditionExpression=Attr(self.hash_key).exists(),
            ReturnValues='ALL_NEW',
            **self._update_expression(fields, {})
        )
        return self._to_record(response['Attributes'])

    def upsert(self, key: Dict[str, Any], create_fields: Dict[str, Any],
               update_fields: Dict[str, Any]) -> T:
        """
        Insert or update a record in a single write.

        Attributes in update_fields are always written. Attributes only in
        create_fields are written when the record does not have them yet.
        """
        create_fields = {k: v for k, v in create_fields.items() if k not in self.key_fields}
        update_fields = {k: v for k, v in update_fields.items() if k not in self.key_fields}
        response = self.table.update_item(
            Key={name: to_dynamo(value) for name, value in key.items()},
            ReturnValues='ALL_NEW',
            **self._update_expression(update_fields, create_fields)
        )
        return self._to_record(response['Attributes'])

    def delete(self, key: Dict[str, Any], condition: Optional[ConditionBase] = None) -> None:
        kwargs = {}
        if condition is not None:
            kwargs['ConditionExpression'] = condition
        self.table.delete_item(
            Key={name: to_dynamo(value) for name, value in key.items()},
            **kwargs
        )

    def delete_many(self, condition: Optional[ConditionBase] = None) -> int:
        """
        Delete every record matching a filter in batches of 25 items.

        Returns:
            Count of deleted records
        """
        keys = [
            {name: item[name] for name in self.key_fields}
            for item in self._scan(condition)
        ]
        if not keys:
            return 0

        logger.info(f"Deleting {len(keys)} records from {self.table_name}")
        deleted = 0

        for i in range(0, len(keys), self.BATCH_SIZE):
            batch = keys[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for key in batch:
                        writer.delete_item(Key=key)
                deleted += len(batch)
            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1} "
                    f"from {self.table_name}: {e}"
                )
                continue

        return deleted

    def count(self, condition: Optional[ConditionBase] = None) -> int:
        kwargs = {'Select': 'COUNT'}
        if condition is not None:
            kwargs['FilterExpression'] = condition

        response = self.table.scan(**kwargs)
        total = response.get('Count', 0)
        while 'LastEvaluatedKey' in response:
            response = self.table.scan(
                ExclusiveStartKey=response['LastEvaluatedKey'],
                **kwargs
            )
            total += response.get('Count', 0)
        return total
