import logging


def pytest_configure(config):
    logging.basicConfig(format='[%(levelname)s] %(message)s', level='INFO')
