"""Bootstrap and membership maintenance for etcd clusters running in an AWS autoscaling group."""
