""" Abstractions for the Amazon Web Services (AWS) APIs the etcd tools consume

Instance: a group member as seen by EC2 (instance id and private DNS name)
LifecycleEvent: an autoscaling lifecycle notification delivered through SQS
Ec2Cluster: the autoscaling group the local instance belongs to, bound to a
    boto3 session
"""
import json
import logging
import os
from collections import namedtuple
from typing import Callable, List, Optional

import boto3
import requests
import retrying
from botocore import exceptions

from etcd_aws.config import DEFAULT_TAG_NAME
from etcd_aws.exceptions import InstanceDiscoveryError, LifecycleHookNotFound

log = logging.getLogger(__name__)

INSTANCE_METADATA_URL = 'http://169.254.169.254/latest/meta-data/'
METADATA_TIMEOUT = 2

INSTANCE_TERMINATING = 'autoscaling:EC2_INSTANCE_TERMINATING'
STACK_ID_TAG = 'aws:cloudformation:stack-id'
LOGICAL_ID_TAG = 'aws:cloudformation:logical-id'

# Long-polling parameters used while waiting for lifecycle notifications.
SQS_WAIT_TIME_SECONDS = 10
SQS_VISIBILITY_TIMEOUT = 300

Instance = namedtuple('Instance', ['id', 'address'])


class LifecycleEvent(namedtuple('LifecycleEvent', [
        'transition',
        'instance_id',
        'group_name',
        'hook_name',
        'action_token'])):
    """A message posted to SQS by the autoscaling service.

    Test notifications and other non-lifecycle messages carry an empty
    `transition`.
    """

    __slots__ = ()

    @classmethod
    def from_message_body(cls, body: str) -> 'LifecycleEvent':
        """Decode the JSON body of an SQS message.

        Raises:
            ValueError: `body` is not a JSON object.
        """
        data = json.loads(body)
        if not isinstance(data, dict):
            raise ValueError("lifecycle message is not a JSON object")
        return cls(
            transition=data.get('LifecycleTransition', ''),
            instance_id=data.get('EC2InstanceId', ''),
            group_name=data.get('AutoScalingGroupName', ''),
            hook_name=data.get('LifecycleHookName', ''),
            action_token=data.get('LifecycleActionToken', ''))

    @property
    def is_terminating(self) -> bool:
        return self.transition == INSTANCE_TERMINATING


def is_rate_limit_error(exception):
    if isinstance(exception, exceptions.ClientError):
        error_code = exception.response['Error']['Code']
    elif isinstance(exception, exceptions.WaiterError):
        error_code = exception.last_response['Error']['Code']
    else:
        return False
    if error_code in ['Throttling', 'RequestLimitExceeded']:
        log.warning('AWS API Limiting error: %s', error_code)
        return True
    return False


retry_boto_rate_limits = retrying.retry(
    wait_exponential_multiplier=1000,
    wait_exponential_max=30 * 1000,
    stop_max_delay=600 * 1000,
    retry_on_exception=is_rate_limit_error)


def fetch_instance_metadata(path: str) -> str:
    """Fetch `path` relative to the latest/meta-data folder of the metadata service."""
    url = INSTANCE_METADATA_URL + path
    try:
        response = requests.get(url, timeout=METADATA_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise InstanceDiscoveryError("cannot fetch instance metadata `{}`: {}".format(url, exc)) from exc
    return response.text.strip()


def discover_instance_id() -> str:
    instance_id = fetch_instance_metadata('instance-id')
    log.info("Discovered local instance id `%s`", instance_id)
    return instance_id


def discover_region() -> str:
    region = os.environ.get('AWS_REGION')
    if region:
        return region
    # Removing the last character of the availability zone gives us the region.
    return fetch_instance_metadata('placement/availability-zone')[:-1]


def _find_tag(tags, key) -> Optional[str]:
    for tag in tags or []:
        if tag.get('Key') == key:
            return tag.get('Value')
    return None


class Ec2Cluster:
    """The set of instances sharing the local instance's cluster tag.

    By default the tag is `aws:autoscaling:groupName`, so the cluster is the
    autoscaling group the local instance was launched into.
    """

    def __init__(self, instance_id, tag_name=DEFAULT_TAG_NAME, region=None, session=None):
        self.instance_id = instance_id
        self.tag_name = tag_name
        self.region = region
        self.session = session or boto3.session.Session()
        self._instance = None

    @classmethod
    def from_config(cls, config):
        return cls(config.instance_id, config.tag_name, config.region)

    def client(self, name):
        return self.session.client(service_name=name, region_name=self.region)

    @retry_boto_rate_limits
    def _describe_local_instance(self):
        reservations = self.client('ec2').describe_instances(InstanceIds=[self.instance_id])['Reservations']
        for reservation in reservations:
            for instance in reservation['Instances']:
                return instance
        raise InstanceDiscoveryError("instance `{}` not found".format(self.instance_id))

    def describe_instance(self) -> dict:
        if self._instance is None:
            self._instance = self._describe_local_instance()
        return self._instance

    def instance(self) -> Instance:
        description = self.describe_instance()
        return Instance(description['InstanceId'], description.get('PrivateDnsName') or None)

    def tag(self, key) -> Optional[str]:
        return _find_tag(self.describe_instance().get('Tags'), key)

    def _cluster_tag_value(self) -> str:
        value = self.tag(self.tag_name)
        if not value:
            raise InstanceDiscoveryError(
                "instance `{}` does not have a `{}` tag".format(self.instance_id, self.tag_name))
        return value

    @retry_boto_rate_limits
    def members(self) -> List[Instance]:
        """Return the instances of the cluster, the local one included.

        Instances without a private DNS name are reported with a `None` address.
        """
        paginator = self.client('ec2').get_paginator('describe_instances')
        pages = paginator.paginate(Filters=[
            {'Name': 'tag:{}'.format(self.tag_name), 'Values': [self._cluster_tag_value()]},
            {'Name': 'instance-state-name', 'Values': ['pending', 'running']},
        ])
        return [
            Instance(i['InstanceId'], i.get('PrivateDnsName') or None)
            for page in pages
            for reservation in page['Reservations']
            for i in reservation['Instances']]

    @retry_boto_rate_limits
    def autoscaling_group(self) -> Optional[dict]:
        group_name = self.tag(DEFAULT_TAG_NAME)
        if not group_name:
            return None
        groups = self.client('autoscaling').describe_auto_scaling_groups(
            AutoScalingGroupNames=[group_name])['AutoScalingGroups']
        return groups[0] if groups else None

    def cluster_token(self) -> Optional[str]:
        group = self.autoscaling_group()
        if group is None:
            return None
        return group['AutoScalingGroupARN']

    @retry_boto_rate_limits
    def lifecycle_event_queue_url(self) -> str:
        """Return the URL of the SQS queue lifecycle hooks of the group post to.

        Raises:
            LifecycleHookNotFound: the group or its SQS lifecycle hook does not
                exist yet, which is expected while CloudFormation creates it.
        """
        group = self.autoscaling_group()
        group_name = self.tag(DEFAULT_TAG_NAME) or ''
        if group is None:
            raise LifecycleHookNotFound(group_name)
        hooks = self.client('autoscaling').describe_lifecycle_hooks(
            AutoScalingGroupName=group['AutoScalingGroupName'])['LifecycleHooks']
        for hook in hooks:
            target_arn = hook.get('NotificationTargetARN', '')
            if not target_arn.startswith('arn:aws:sqs:'):
                continue
            arn_parts = target_arn.split(':')
            response = self.client('sqs').get_queue_url(
                QueueName=arn_parts[-1],
                QueueOwnerAWSAccountId=arn_parts[-2])
            return response['QueueUrl']
        raise LifecycleHookNotFound(group['AutoScalingGroupName'])

    def _complete_lifecycle_action(self, event: LifecycleEvent) -> None:
        log.info("Completing lifecycle action `%s` for instance `%s`", event.hook_name, event.instance_id)
        self.client('autoscaling').complete_lifecycle_action(
            AutoScalingGroupName=event.group_name,
            LifecycleHookName=event.hook_name,
            LifecycleActionToken=event.action_token,
            LifecycleActionResult='CONTINUE',
            InstanceId=event.instance_id)

    def watch_lifecycle_events(self, queue_url: str, handler: Callable[[LifecycleEvent], bool]) -> None:
        """Feed lifecycle events from `queue_url` to `handler` in delivery order.

        Once `handler` returns, the lifecycle action is completed and the message
        is deleted. Returns as soon as `handler` returns False. Exceptions raised
        by `handler` propagate and leave the message on the queue.

        Messages that cannot be decoded are deleted without reaching `handler`.
        A lifecycle action that cannot be completed, for example because its
        token expired, is logged and its message is deleted all the same.
        """
        sqs = self.client('sqs')
        while True:
            response = sqs.receive_message(
                QueueUrl=queue_url,
                MaxNumberOfMessages=1,
                VisibilityTimeout=SQS_VISIBILITY_TIMEOUT,
                WaitTimeSeconds=SQS_WAIT_TIME_SECONDS)
            for message in response.get('Messages', []):
                receipt_handle = message['ReceiptHandle']
                try:
                    event = LifecycleEvent.from_message_body(message['Body'])
                except ValueError as e:
                    log.warning("Discarding undecodable lifecycle message `%s`: %s",
                                message.get('MessageId', receipt_handle), e)
                    sqs.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)
                    continue
                log.debug("Received lifecycle event %s", event)
                should_continue = handler(event)
                if event.transition and event.action_token:
                    try:
                        self._complete_lifecycle_action(event)
                    except exceptions.ClientError as e:
                        log.warning("Could not complete lifecycle action for instance `%s`: %s",
                                    event.instance_id, e)
                sqs.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)
                if not should_continue:
                    return

    def signal_resource(self, status='SUCCESS') -> None:
        """Signal the CloudFormation resource that launched the local instance."""
        stack_name = self.tag(STACK_ID_TAG)
        if not stack_name:
            raise InstanceDiscoveryError("instance `{}` has no `{}` tag".format(self.instance_id, STACK_ID_TAG))
        resource_id = self.tag(LOGICAL_ID_TAG)
        if not resource_id:
            raise InstanceDiscoveryError("instance `{}` has no `{}` tag".format(self.instance_id, LOGICAL_ID_TAG))
        log.info(
            "Signaling %s for `%s` on instance `%s` in stack `%s`",
            status, resource_id, self.instance_id, stack_name)
        self.client('cloudformation').signal_resource(
            StackName=stack_name,
            LogicalResourceId=resource_id,
            UniqueId=self.instance_id,
            Status=status)
