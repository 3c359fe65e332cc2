"""
EKS Node Log Collector

Gathers OS, Docker and EKS node-agent logs from a worker node into a single
tar.gz bundle, or enables Docker daemon debug logging.
"""

__version__ = '0.0.1'
