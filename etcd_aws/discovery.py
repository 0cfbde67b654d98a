#!/usr/bin/env python

"""Compute the bootstrap parameters of an etcd member.

etcd needs to know at startup whether it forms a new cluster or joins an
existing one, and which peers make up the initial cluster. Both are derived
from the instances of the autoscaling group:

1. Every instance with a private DNS name contributes
   `<instance id>=<scheme>://<dns name>:2380` to ETCD_INITIAL_CLUSTER, in the
   order EC2 enumerates them.

2. Every other instance is asked for its `stats/self` document. A peer that
   cannot be reached is skipped, it must not hold back the bootstrap.

3. The first peer that reports a leader flips the cluster state to
   `existing`. That peer is told about the new member before etcd starts, so
   the running cluster does not reject the newcomer as unexpected. Later
   peers with a leader do not trigger another registration.

The resulting `KEY=VALUE` lines are consumed as an environment file by the
etcd service.
"""

import argparse
import enum
import functools
import logging
import sys
from collections import namedtuple, OrderedDict
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from botocore import exceptions

from etcd_aws import cli
from etcd_aws.aws import discover_instance_id, discover_region, Ec2Cluster, Instance
from etcd_aws.config import ClusterConfig, CLIENT_PORT, PEER_PORT, TLSConfig
from etcd_aws.etcd import AdminClient, client_url, has_leader, Member, peer_url, probe
from etcd_aws.exceptions import EtcdAPIError, InstanceDiscoveryError

log = logging.getLogger(__name__)


class ClusterState(enum.Enum):
    NEW = 'new'
    EXISTING = 'existing'


ProbeResult = namedtuple('ProbeResult', ['instance', 'status', 'error'])

# Accumulator of the fold over probe results: `join_via` is the first peer
# found with a leader, or None while the cluster still looks new.
Resolution = namedtuple('Resolution', ['state', 'join_via'])


def initial_cluster_entry(tls: TLSConfig, instance: Instance) -> str:
    return "{}={}".format(instance.id, peer_url(tls, instance.address))


def probe_peers(client: AdminClient, local: Instance, instances: Iterable[Instance]) -> Iterator[ProbeResult]:
    """Probe every addressable peer except `local`, one at a time."""
    for instance in instances:
        if instance.address is None or instance.id == local.id:
            continue
        try:
            yield ProbeResult(instance, probe(client, instance), None)
        except EtcdAPIError as exc:
            log.warning("%s", exc)
            yield ProbeResult(instance, None, exc)


def pre_join(client: AdminClient, local: Instance, peer: Instance) -> Optional[Member]:
    """Register `local` as a member with the cluster `peer` belongs to.

    Best effort: etcd's own join protocol is authoritative, so a failure is
    logged and the bootstrap carries on.
    """
    log.info("joining cluster via %s", peer.id)
    candidate = Member.candidate(local.id, [peer_url(client.tls, local.address)])
    try:
        member = client.add_member(peer.address, peer.id, candidate)
    except EtcdAPIError as exc:
        log.error("pre-join registration of %s failed: %s", local.id, exc)
        return None
    log.info("%s registered as member `%s` via %s", local.id, member.id, peer.id)
    return member


def fold_probe_result(on_first_leader: Callable[[Instance], None], resolution: Resolution,
                      result: ProbeResult) -> Resolution:
    if resolution.join_via is not None:
        return resolution
    if result.status is None or not has_leader(result.status):
        return resolution
    on_first_leader(result.instance)
    return Resolution(ClusterState.EXISTING, result.instance)


def resolve_state(results: Iterable[ProbeResult], on_first_leader: Callable[[Instance], None]) -> Resolution:
    return functools.reduce(
        functools.partial(fold_probe_result, on_first_leader),
        results,
        Resolution(ClusterState.NEW, None))


def build_cluster(client: AdminClient, local: Instance,
                  instances: List[Instance]) -> Tuple[ClusterState, List[str]]:
    """Return the initial cluster state and ETCD_INITIAL_CLUSTER entries."""
    initial_cluster = [
        initial_cluster_entry(client.tls, instance)
        for instance in instances if instance.address is not None]
    resolution = resolve_state(
        probe_peers(client, local, instances),
        lambda peer: pre_join(client, local, peer))
    log.info("Initial cluster state is `%s`", resolution.state.value)
    return resolution.state, initial_cluster


def bootstrap_parameters(tls: TLSConfig, local: Instance, state: ClusterState,
                         initial_cluster: List[str], token: Optional[str] = None) -> OrderedDict:
    params = OrderedDict([
        ('ETCD_NAME', local.id),
        ('ETCD_ADVERTISE_CLIENT_URLS', client_url(tls, local.address)),
        ('ETCD_LISTEN_CLIENT_URLS', "{}://0.0.0.0:{}".format(tls.scheme, CLIENT_PORT)),
        ('ETCD_LISTEN_PEER_URLS', "{}://0.0.0.0:{}".format(tls.scheme, PEER_PORT)),
        ('ETCD_INITIAL_CLUSTER_STATE', state.value),
        ('ETCD_INITIAL_CLUSTER', ','.join(initial_cluster)),
        ('ETCD_INITIAL_ADVERTISE_PEER_URLS', peer_url(tls, local.address)),
    ])
    if token:
        params['ETCD_INITIAL_CLUSTER_TOKEN'] = token
    return params


def render_parameters(params: OrderedDict) -> str:
    return ''.join("{}={}\n".format(key, value) for key, value in params.items())


def discover(cluster: Ec2Cluster, client: AdminClient) -> OrderedDict:
    local = cluster.instance()
    if local.address is None:
        raise InstanceDiscoveryError("local instance `{}` has no private DNS name".format(local.id))
    instances = cluster.members()
    log.info("Found cluster instances: %s", ', '.join(i.id for i in instances))
    # Must run before build_cluster, whose pre-join registers us with the running cluster.
    try:
        token = cluster.cluster_token()
    except exceptions.ClientError as e:
        log.warning("Autoscaling group lookup failed: %s", e)
        token = None
    if token is None:
        log.info("No autoscaling group found, omitting ETCD_INITIAL_CLUSTER_TOKEN")
    state, initial_cluster = build_cluster(client, local, instances)
    return bootstrap_parameters(client.tls, local, state, initial_cluster, token)


def dump_parameters(params: OrderedDict, file_path: Optional[str]) -> None:
    content = render_parameters(params)
    if not file_path:
        sys.stdout.write(content)
        return
    log.info("Writing bootstrap parameters to file `%s`", file_path)
    with open(file_path, 'w') as f:
        f.write(content)


def parse_cmdline(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='etcd bootstrap parameters for an autoscaling group member')
    cli.add_cluster_args(parser)
    cli.add_tls_args(parser)
    parser.add_argument('--output-file',
                        action='store',
                        default='',
                        help='file the parameters are written to instead of stdout')
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_cmdline(argv)
    cli.setup_logger(args)

    try:
        tls = cli.tls_config(args)
        instance_id = args.instance or discover_instance_id()
        config = ClusterConfig(instance_id, args.tag, args.region or discover_region(), cli.timeout(args))
        params = discover(Ec2Cluster.from_config(config), AdminClient(tls, timeout=config.timeout))
        dump_parameters(params, args.output_file)
    except Exception as e:  # pylint: disable=broad-except
        log.exception("error occured: %s", e)
        sys.exit(1)


if __name__ == '__main__':
    main()
