"""Business error codes shared by the stores, adaptors and entry points."""
from typing import Dict, Optional

OK = 200
UNKNOWN = 500

_registry: Dict[int, "BusinessError"] = {}


class BusinessError(Exception):
    """An error with a stable numeric code and an HTTP status.

    Instances created through :func:`new_error` are registered templates.
    Call a template to get a fresh instance to raise, optionally with a more
    specific message: ``raise ClusterNotFound()`` or
    ``raise ClusterNodeRoleMiss("Provide at least one etcd node")``.
    """

    def __init__(self, status: int, code: int, msg: str, reason: str = ""):
        super().__init__(msg)
        self.status = status
        self.code = code
        self.msg = msg
        self.reason = reason

    def __call__(self, msg: Optional[str] = None) -> "BusinessError":
        return BusinessError(self.status, self.code, msg or self.msg, self.reason)

    def __eq__(self, other) -> bool:
        return isinstance(other, BusinessError) and other.code == self.code

    def __hash__(self) -> int:
        return hash(self.code)

    def __repr__(self) -> str:
        return f"BusinessError(code={self.code}, msg={self.msg!r})"


def new_error(status: int, code: int, msg: str, reason: str = "") -> BusinessError:
    """Register a business error. A code may only be registered once."""
    if code in _registry:
        raise ValueError(f"bcode {code} already exists")
    err = BusinessError(status, code, msg, reason)
    _registry[code] = err
    return err


def err_to_code(err: Optional[BaseException]) -> int:
    """Return the business code of ``err`` or of the error that caused it."""
    if err is None:
        return OK
    seen = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, BusinessError):
            return err.code
        seen.add(id(err))
        err = err.__cause__
    return UNKNOWN


def err_to_status(err: Optional[BaseException]) -> int:
    code = err_to_code(err)
    found = _registry.get(code)
    if found is not None:
        return found.status
    return OK if code == OK else UNKNOWN


# tenant credentials
ProviderNotSupported = new_error(400, 7001, "provider not support", "ProviderNotSupported")
AccessKeyMissing = new_error(400, 7002, "access key not set", "AccessKeyMissing")
AccessKeyMismatch = new_error(400, 7004, "access key mismatch", "AccessKeyMismatch")

# tasks
LastTaskNotComplete = new_error(400, 7005, "last task can not complete", "LastTaskNotComplete")

# probing
KubeAPIUnreachable = new_error(400, 7006, "kube api can not access", "KubeAPIUnreachable")

# node validation
ClusterNodeEmpty = new_error(400, 7009, "RKE node must define", "ClusterNodeEmpty")
ClusterNodeRoleMiss = new_error(400, 7010, "RKE node role must define", "ClusterNodeRoleMiss")
ETCDNodeNotOddNumber = new_error(400, 7011, "the number of etcd node must be odd", "ETCDNodeNotOddNumber")
ClusterNodeIPInvalid = new_error(400, 7012, "node ip address is invalid", "ClusterNodeIPInvalid")
ClusterNodePortInvalid = new_error(400, 7013, "node ssh port is invalid", "ClusterNodePortInvalid")

# cluster store
KubeConfigEmpty = new_error(400, 7014, "not found kube config", "KubeConfigEmpty")
ClusterNotAllowDelete = new_error(400, 7015, "rainbond is installed, cluster can not be deleted", "ClusterNotAllowDelete")
ClusterNotFound = new_error(404, 7022, "cluster not found", "ClusterNotFound")
ClusterNameConflict = new_error(409, 7023, "cluster name already exists", "ClusterNameConflict")

# state machine refusals
NotSupportReinstall = new_error(400, 7016, "current cluster state can not be reinstalled", "NotSupportReinstall")
NotSupportUpdateKubernetes = new_error(400, 7017, "provider does not support updating kubernetes", "NotSupportUpdateKubernetes")

# declarative spec
ConfigInvalid = new_error(400, 7018, "config is invalid", "ConfigInvalid")
IncorrectRKEConfig = new_error(400, 7020, "incorrect rke config", "IncorrectRKEConfig")
RKEConfigLost = new_error(404, 7021, "rke config lost, please reconfigure the cluster", "RKEConfigLost")

# reachability
SSHFileNotFound = new_error(400, 7024, "ssh private key file not found", "SSHFileNotFound")
SSHParse = new_error(400, 7025, "ssh private key can not be parsed", "SSHParse")
SSHConnect = new_error(400, 7026, "ssh connect failure", "SSHConnect")

# app store
AppStoreNotFound = new_error(404, 8000, "app store not found", "AppStoreNotFound")
AppStoreNameConflict = new_error(409, 8001, "app store name conflict", "AppStoreNameConflict")
AppTemplateNotFound = new_error(404, 8003, "app template not found", "AppTemplateNotFound")
TemplateVersionNotFound = new_error(404, 8004, "template version not found", "TemplateVersionNotFound")
