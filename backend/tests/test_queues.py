from __future__ import annotations

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from identity_api.services.queues import InMemoryQueueProvisioner, SqsQueueProvisioner

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/sd-jobs_u-1"


def _client():
    return boto3.client(
        "sqs",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def test_create_queue():
    client = _client()
    stubber = Stubber(client)
    stubber.add_response("create_queue", {"QueueUrl": QUEUE_URL}, {"QueueName": "sd-jobs_u-1"})

    with stubber:
        SqsQueueProvisioner(client).create_queue("sd-jobs_u-1")
    stubber.assert_no_pending_responses()


def test_create_existing_queue_is_ignored():
    client = _client()
    stubber = Stubber(client)
    stubber.add_client_error("create_queue", service_error_code="QueueAlreadyExists", http_status_code=400)

    with stubber:
        SqsQueueProvisioner(client).create_queue("sd-jobs_u-1")


def test_create_queue_other_errors_propagate():
    client = _client()
    stubber = Stubber(client)
    stubber.add_client_error("create_queue", service_error_code="AccessDenied", http_status_code=403)

    with stubber:
        with pytest.raises(ClientError):
            SqsQueueProvisioner(client).create_queue("sd-jobs_u-1")


def test_delete_queue_resolves_url_first():
    client = _client()
    stubber = Stubber(client)
    stubber.add_response("get_queue_url", {"QueueUrl": QUEUE_URL}, {"QueueName": "sd-jobs_u-1"})
    stubber.add_response("delete_queue", {}, {"QueueUrl": QUEUE_URL})

    with stubber:
        SqsQueueProvisioner(client).delete_queue("sd-jobs_u-1")
    stubber.assert_no_pending_responses()


def test_delete_missing_queue_is_ignored():
    client = _client()
    stubber = Stubber(client)
    stubber.add_client_error(
        "get_queue_url",
        service_error_code="AWS.SimpleQueueService.NonExistentQueue",
        http_status_code=400,
    )

    with stubber:
        SqsQueueProvisioner(client).delete_queue("sd-jobs_u-1")


def test_in_memory_provisioner():
    queues = InMemoryQueueProvisioner()
    queues.create_queue("q")
    queues.create_queue("q")
    assert queues.queues == {"q"}
    assert queues.created == ["q", "q"]
    queues.delete_queue("q")
    queues.delete_queue("q")
    assert queues.queues == set()
