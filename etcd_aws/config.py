import os
from collections import namedtuple
from pathlib import Path

from etcd_aws.exceptions import ConfigError

CLIENT_PORT = 2379
PEER_PORT = 2380

DEFAULT_TAG_NAME = 'aws:autoscaling:groupName'
# (connect, read) seconds for every call against an etcd admin endpoint.
DEFAULT_TIMEOUT = (3.05, 10)


class TLSConfig(namedtuple('TLSConfig', ['cert_path', 'key_path', 'ca_path'])):
    """TLS material shared by every etcd API call of a process.

    A non-empty certificate path switches both the peer and the client
    channels to https and enables client certificate authentication.
    """

    __slots__ = ()

    @classmethod
    def disabled(cls):
        return cls('', '', '')

    @property
    def enabled(self) -> bool:
        return bool(self.cert_path)

    @property
    def scheme(self) -> str:
        return 'https' if self.enabled else 'http'

    def validate(self) -> 'TLSConfig':
        if not self.enabled:
            return self
        for name, value in zip(self._fields, self):
            if not value:
                continue
            path = Path(value)
            if not path.exists():
                raise ConfigError('{} `{}` does not exist'.format(name, value))
            if not path.is_file():
                raise ConfigError('{} `{}` is not a file'.format(name, value))
        return self

    def requests_kwargs(self) -> dict:
        if not self.enabled:
            return {}
        cert = (self.cert_path, self.key_path) if self.key_path else self.cert_path
        return {
            'cert': cert,
            'verify': self.ca_path if self.ca_path else True,
        }


ClusterConfig = namedtuple('ClusterConfig', ['instance_id', 'tag_name', 'region', 'timeout'])


def env_default(name, default=''):
    return os.environ.get(name, default)
