#!/usr/bin/env python

"""Remove terminating autoscaling group instances from the etcd cluster.

The reconciler alternates between two states forever:

AWAITING_SOURCE:
    Look up the SQS queue the group's lifecycle hook posts to. While the
    hook does not exist yet (CloudFormation may still be creating it) wait
    `ACQUIRE_BACKOFF` seconds and look again. Any other failure is fatal.

CONSUMING:
    Handle lifecycle events one at a time, in delivery order. A terminating
    instance is looked up by name in the member list of the local etcd and
    removed. After a removal, or when the local etcd cannot be talked to, the
    session ends and the queue is looked up again.
"""

import argparse
import enum
import logging
import sys
import time
from typing import Callable, Optional

from etcd_aws import cli
from etcd_aws.aws import discover_instance_id, discover_region, Ec2Cluster, Instance, LifecycleEvent
from etcd_aws.config import ClusterConfig
from etcd_aws.etcd import AdminClient
from etcd_aws.exceptions import EtcdAPIError, InstanceDiscoveryError, LifecycleHookNotFound

log = logging.getLogger(__name__)

# Seconds to wait before looking up a lifecycle hook that did not exist yet.
ACQUIRE_BACKOFF = 10


class State(enum.Enum):
    AWAITING_SOURCE = 'awaiting-source'
    CONSUMING = 'consuming'


class Outcome(enum.Enum):
    # Outcomes of looking up the event source.
    ACQUIRED = 'acquired'
    NOT_FOUND = 'not-found'
    # Outcomes of a consuming session.
    STOPPED = 'stopped'
    FAILED = 'failed'


_TRANSITIONS = {
    (State.AWAITING_SOURCE, Outcome.ACQUIRED): State.CONSUMING,
    (State.AWAITING_SOURCE, Outcome.NOT_FOUND): State.AWAITING_SOURCE,
    (State.CONSUMING, Outcome.STOPPED): State.AWAITING_SOURCE,
    (State.CONSUMING, Outcome.FAILED): State.AWAITING_SOURCE,
}


def next_state(state: State, outcome: Outcome) -> State:
    try:
        return _TRANSITIONS[(state, outcome)]
    except KeyError:
        raise ValueError("no transition from `{}` on `{}`".format(state.value, outcome.value))


class LifecycleReconciler:
    """Keeps etcd membership in line with the instances of the autoscaling group.

    `source` must provide `lifecycle_event_queue_url()` and
    `watch_lifecycle_events(queue_url, handler)`, as `Ec2Cluster` does.
    """

    def __init__(self, source, client: AdminClient, local: Instance,
                 backoff: float = ACQUIRE_BACKOFF, sleep: Callable[[float], None] = time.sleep):
        self.source = source
        self.client = client
        self.local = local
        self.backoff = backoff
        self.sleep = sleep
        self.state = State.AWAITING_SOURCE
        self.queue_url = None  # type: Optional[str]

    def handle_event(self, event: LifecycleEvent) -> bool:
        """Return whether to keep consuming events from the current source.

        Raises:
            EtcdAPIError: the local etcd member list could not be read or the
                member could not be removed.
        """
        if not event.is_terminating:
            return True

        members = self.client.list_members(self.local.address, self.local.id)
        member_id = next((m.id for m in members if m.name == event.instance_id), '')

        if not member_id:
            log.warning("received termination event for non-member `%s`", event.instance_id)
            return True

        log.info("removing instance `%s` (member `%s`) from cluster", event.instance_id, member_id)
        self.client.remove_member(self.local.address, self.local.id, member_id)
        log.info("instance `%s` was removed from the cluster", event.instance_id)
        return False

    def acquire(self) -> Outcome:
        try:
            self.queue_url = self.source.lifecycle_event_queue_url()
        except LifecycleHookNotFound as exc:
            log.warning("%s, retrying in %s seconds", exc, self.backoff)
            self.sleep(self.backoff)
            return Outcome.NOT_FOUND
        log.info("Found lifecycle SQS queue: %s", self.queue_url)
        return Outcome.ACQUIRED

    def consume(self) -> Outcome:
        try:
            self.source.watch_lifecycle_events(self.queue_url, self.handle_event)
        except EtcdAPIError as exc:
            log.error("stopped consuming lifecycle events: %s, retrying in %s seconds", exc, self.backoff)
            self.sleep(self.backoff)
            return Outcome.FAILED
        return Outcome.STOPPED

    def step(self) -> State:
        if self.state is State.AWAITING_SOURCE:
            outcome = self.acquire()
        else:
            outcome = self.consume()
        self.state = next_state(self.state, outcome)
        return self.state

    def run(self, max_steps: Optional[int] = None) -> None:
        """Alternate between the two states, forever unless `max_steps` is given."""
        steps = 0
        while max_steps is None or steps < max_steps:
            self.step()
            steps += 1


def parse_cmdline(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='remove terminating autoscaling group instances from etcd')
    cli.add_cluster_args(parser)
    cli.add_tls_args(parser)
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_cmdline(argv)
    cli.setup_logger(args)

    try:
        tls = cli.tls_config(args)
        instance_id = args.instance or discover_instance_id()
        config = ClusterConfig(instance_id, args.tag, args.region or discover_region(), cli.timeout(args))
        cluster = Ec2Cluster.from_config(config)
        local = cluster.instance()
        if local.address is None:
            raise InstanceDiscoveryError("local instance `{}` has no private DNS name".format(local.id))
        reconciler = LifecycleReconciler(cluster, AdminClient(tls, timeout=config.timeout), local)
        reconciler.run()
    except Exception as e:  # pylint: disable=broad-except
        log.exception("error occured: %s", e)
        sys.exit(1)


if __name__ == '__main__':
    main()
