class EtcdAPIError(Exception):

    def __init__(self, instance_id, method, url, base_exception):
        self.instance_id = instance_id
        self.method = method
        self.url = url
        self.base_exception = base_exception

    def __str__(self):
        return "{}: {} {}: {}".format(self.instance_id, self.method, self.url, self.base_exception)


class InstanceDiscoveryError(Exception):
    pass


class LifecycleHookNotFound(Exception):

    def __init__(self, group_name):
        self.group_name = group_name

    def __str__(self):
        return "cannot find a suitable lifecycle hook for autoscaling group `{}`".format(self.group_name)


class ConfigError(Exception):
    pass
