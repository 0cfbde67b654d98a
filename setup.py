from setuptools import setup


setup(
    name='etcd-aws-cluster',
    version='0.1',
    description='etcd cluster bootstrap and membership maintenance for AWS autoscaling groups',
    license='apache2',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3',
    ],
    packages=['etcd_aws'],
    install_requires=[
        'boto3',
        'botocore',
        'coloredlogs',
        'Flask',
        'python-dateutil',
        'requests',
        'retrying',
    ],
    extras_require={
        'test': [
            'pytest',
            'responses',
        ],
    },
    entry_points={
        'console_scripts': [
            'gen-etcd-discovery-params=etcd_aws.discovery:main',
            'monitor-asg-lifecycle=etcd_aws.lifecycle:main',
            'etcd-cfn-signal=etcd_aws.cfn_signal:main',
            'etcd-health-proxy=etcd_aws.health_proxy:main',
        ],
    },
    zip_safe=False
)
