# identity_api/services/queues.py
"""Per-user job queue provisioning (SQS)."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Protocol

from botocore.client import BaseClient
from botocore.exceptions import ClientError


logger = logging.getLogger(__name__)

_ALREADY_EXISTS = {"QueueAlreadyExists", "QueueNameExists"}
_DOES_NOT_EXIST = {"AWS.SimpleQueueService.NonExistentQueue", "QueueDoesNotExist"}


class QueueProvisioner(Protocol):
    def create_queue(self, name: str) -> None: ...

    def delete_queue(self, name: str) -> None: ...


def _error_code(err: ClientError) -> str:
    return err.response.get("Error", {}).get("Code", "")


@dataclass(frozen=True)
class SqsQueueProvisioner:
    client: BaseClient

    def create_queue(self, name: str) -> None:
        try:
            self.client.create_queue(QueueName=name)
        except ClientError as err:
            if _error_code(err) not in _ALREADY_EXISTS:
                raise
            logger.info("Queue %s already exists", name)
            return
        logger.info("Created queue %s", name)

    def delete_queue(self, name: str) -> None:
        try:
            url = self.client.get_queue_url(QueueName=name)["QueueUrl"]
            self.client.delete_queue(QueueUrl=url)
        except ClientError as err:
            if _error_code(err) not in _DOES_NOT_EXIST:
                raise
            logger.info("Queue %s does not exist", name)
            return
        logger.info("Deleted queue %s", name)


@dataclass
class InMemoryQueueProvisioner:
    queues: set[str] = field(default_factory=set)
    created: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def create_queue(self, name: str) -> None:
        with self._lock:
            self.created.append(name)
            self.queues.add(name)

    def delete_queue(self, name: str) -> None:
        with self._lock:
            self.queues.discard(name)
