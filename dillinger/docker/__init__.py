# Docker package
from .client import DockerClient, demux_docker_stream, socket_path_from_url

__all__ = ['DockerClient', 'demux_docker_stream', 'socket_path_from_url']
