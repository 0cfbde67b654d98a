import argparse
import logging

import coloredlogs

from etcd_aws.config import DEFAULT_TAG_NAME, DEFAULT_TIMEOUT, env_default, TLSConfig

log = logging.getLogger(__name__)


def setup_logger(options):
    level = 'INFO'
    if getattr(options, 'verbose', False):
        level = 'DEBUG'
    coloredlogs.install(
        level=level,
        level_styles={
            'warn': {
                'color': 'yellow'
            },
            'error': {
                'color': 'red',
                'bold': True,
            },
        },
        fmt='[%(levelname)s] %(message)s',
    )
    log.debug("Logger set to DEBUG")


def timeout_type(value: str) -> float:
    try:
        timeout = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError('{} is not a number'.format(value))
    if timeout <= 0:
        raise argparse.ArgumentTypeError('timeout must be positive, got {}'.format(value))
    return timeout


def add_tls_args(parser: argparse.ArgumentParser) -> None:
    # Note: if TLS is on at all, it is on for both peer and client traffic.
    parser.add_argument('--etcd-cert-file',
                        action='store',
                        default=env_default('ETCD_CERT_FILE'),
                        help='path to the client server TLS cert file. '
                             'Environment variable: ETCD_CERT_FILE')
    parser.add_argument('--etcd-key-file',
                        action='store',
                        default=env_default('ETCD_KEY_FILE'),
                        help='path to the TLS key. Environment variable: ETCD_KEY_FILE')
    parser.add_argument('--etcd-ca-file',
                        action='store',
                        default=env_default('ETCD_TRUSTED_CA_FILE'),
                        help='path to the client server TLS trusted CA file. '
                             'Environment variable: ETCD_TRUSTED_CA_FILE')
    parser.add_argument('--timeout',
                        action='store',
                        type=timeout_type,
                        default=None,
                        help='seconds to wait for an etcd API call to connect and to answer '
                             '(default: {} and {})'.format(*DEFAULT_TIMEOUT))
    parser.add_argument('--verbose', '-v',
                        action='store_true',
                        help='log debug messages')


def add_cluster_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--instance',
                        action='store',
                        default=env_default('INSTANCE_ID'),
                        help='the instance ID of the cluster member. If not supplied, then the '
                             'instance ID is determined from EC2 metadata. Environment variable: INSTANCE_ID')
    parser.add_argument('--tag',
                        action='store',
                        default=env_default('CLUSTER_TAG_NAME', DEFAULT_TAG_NAME),
                        help='the instance tag that is common to all members of the cluster. '
                             'Environment variable: CLUSTER_TAG_NAME')
    parser.add_argument('--region',
                        action='store',
                        default=env_default('AWS_REGION'),
                        help='the AWS region. If not supplied, it is derived from the availability '
                             'zone in EC2 metadata. Environment variable: AWS_REGION')


def tls_config(args: argparse.Namespace) -> TLSConfig:
    return TLSConfig(args.etcd_cert_file, args.etcd_key_file, args.etcd_ca_file).validate()


def timeout(args: argparse.Namespace):
    if args.timeout is None:
        return DEFAULT_TIMEOUT
    return args.timeout
