import logging
from typing import Optional
from urllib.parse import urlparse

import yaml
from kubernetes import client, config

logger = logging.getLogger("cloudadaptor.kube")


def parse_kubeconfig(kubeconfig: str) -> dict:
    """Parse kubeconfig text into a dict, rejecting empty documents."""
    if not kubeconfig or not kubeconfig.strip():
        raise ValueError("kubeconfig is empty")
    data = yaml.safe_load(kubeconfig)
    if not isinstance(data, dict):
        raise ValueError("kubeconfig is not a mapping")
    return data


def new_kube_client(kubeconfig: str) -> client.ApiClient:
    """
    Build an API client from kubeconfig text.

    Each call returns an independent client; the process-wide default
    configuration of the kubernetes package is never touched, so many
    clusters can be checked from worker threads at once.
    """
    return config.new_client_from_config_dict(parse_kubeconfig(kubeconfig))


def kube_server(kubeconfig: str) -> Optional[str]:
    """Return the API server URL of the current context, if one can be found."""
    try:
        data = parse_kubeconfig(kubeconfig)
    except (ValueError, yaml.YAMLError) as e:
        logger.debug(f"cannot parse kubeconfig: {e}")
        return None
    current = data.get("current-context")
    cluster_name = None
    for ctx in data.get("contexts") or []:
        if ctx.get("name") == current:
            cluster_name = (ctx.get("context") or {}).get("cluster")
            break
    for item in data.get("clusters") or []:
        if cluster_name is None or item.get("name") == cluster_name:
            server = (item.get("cluster") or {}).get("server")
            if server and urlparse(server).scheme:
                return server
    return None
