#!/usr/bin/env python

"""Proxy the health endpoint of the local etcd member.

Load balancer health checks cannot present the client certificate etcd
requires, so this service answers every GET by fetching `<server>/health`
over the TLS-enabled admin client and relaying the answer.
"""

import argparse
import http.client
import logging
import sys

from flask import Flask, current_app, jsonify

from etcd_aws import cli
from etcd_aws.etcd import AdminClient
from etcd_aws.exceptions import EtcdAPIError

log = logging.getLogger(__name__)


def error_response(message, **kwargs):
    kwargs['error'] = message
    return jsonify(kwargs)


def create_app(client: AdminClient, server_url: str) -> Flask:
    app = Flask(__name__)
    app.config['ETCD_CLIENT'] = client
    app.config['ETCD_HEALTH_URL'] = "{}/health".format(server_url.rstrip('/'))

    @app.route('/', defaults={'path': ''}, methods=['GET'])
    @app.route('/<path:path>', methods=['GET'])
    def health(path):
        url = current_app.config['ETCD_HEALTH_URL']
        try:
            upstream = current_app.config['ETCD_CLIENT'].request_url('local', 'GET', url, check_status=False)
        except EtcdAPIError as exc:
            log.error("%s", exc)
            return error_response(str(exc)), http.client.INTERNAL_SERVER_ERROR
        headers = {}
        if 'Content-Type' in upstream.headers:
            headers['Content-Type'] = upstream.headers['Content-Type']
        return upstream.content, upstream.status_code, headers

    return app


def port_type(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError('{} is not a number'.format(value))
    if not 0 < port < 65536:
        raise argparse.ArgumentTypeError('{} is not a valid port'.format(value))
    return port


def parse_cmdline(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='proxy the local etcd health endpoint')
    parser.add_argument('server', help='the etcd server to talk to, e.g. https://127.0.0.1:2379')
    parser.add_argument('--port', '-p',
                        action='store',
                        type=port_type,
                        required=True,
                        help='the port to listen on')
    cli.add_tls_args(parser)
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_cmdline(argv)
    cli.setup_logger(args)

    try:
        client = AdminClient(cli.tls_config(args), timeout=cli.timeout(args))
        create_app(client, args.server).run(host='0.0.0.0', port=args.port)
    except Exception as e:  # pylint: disable=broad-except
        log.exception("error occured: %s", e)
        sys.exit(1)


if __name__ == '__main__':
    main()
