#!/usr/bin/env python

"""Tell CloudFormation the local etcd member is ready.

Waits for the etcd server to report itself healthy, then signals SUCCESS for
the CloudFormation resource that launched this instance.
"""

import argparse
import logging
import sys

import retrying

from etcd_aws import cli
from etcd_aws.aws import discover_instance_id, discover_region, Ec2Cluster
from etcd_aws.config import ClusterConfig
from etcd_aws.etcd import AdminClient
from etcd_aws.exceptions import EtcdAPIError

log = logging.getLogger(__name__)

POLL_INTERVAL = 1


def wait_till_healthy(client: AdminClient, server_url: str, interval=POLL_INTERVAL, timeout=None) -> None:
    """Poll the etcd health endpoint at `server_url` until it reports healthy.

    Args:
        timeout: seconds to keep polling, or None to poll forever.

    Raises:
        retrying.RetryError: `timeout` elapsed before the server became healthy.
    """
    retry_kwargs = {}
    if timeout is not None:
        retry_kwargs['stop_max_delay'] = timeout * 1000

    @retrying.retry(wait_fixed=interval * 1000,
                    retry_on_result=lambda res: res is False,
                    retry_on_exception=lambda ex: False,
                    **retry_kwargs)
    def wait_loop():
        log.info("Checking etcd status...")
        try:
            return client.health(server_url)
        except EtcdAPIError as exc:
            log.info("etcd not responding, will try again: %s", exc)
            return False

    wait_loop()
    log.info("etcd is healthy!")


def parse_cmdline(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='notify CloudFormation of etcd readiness')
    parser.add_argument('server', help='the etcd server to wait for, e.g. https://127.0.0.1:2379')
    parser.add_argument('--wait-timeout',
                        action='store',
                        type=cli.timeout_type,
                        default=None,
                        help='seconds to wait for etcd to become healthy (default: forever)')
    cli.add_cluster_args(parser)
    cli.add_tls_args(parser)
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_cmdline(argv)
    cli.setup_logger(args)

    try:
        tls = cli.tls_config(args)
        wait_till_healthy(AdminClient(tls, timeout=cli.timeout(args)), args.server, timeout=args.wait_timeout)
        instance_id = args.instance or discover_instance_id()
        config = ClusterConfig(instance_id, args.tag, args.region or discover_region(), cli.timeout(args))
        log.info("Signaling cloudformation...")
        Ec2Cluster.from_config(config).signal_resource()
        log.info("We're good!")
    except Exception as e:  # pylint: disable=broad-except
        log.exception("error occured: %s", e)
        sys.exit(1)


if __name__ == '__main__':
    main()
