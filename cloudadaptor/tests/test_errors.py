import pytest

from cloudadaptor import errors


def test_template_call_returns_fresh_instance():
    err = errors.ClusterNodeRoleMiss("Provide at least one etcd node")
    assert err is not errors.ClusterNodeRoleMiss
    assert err == errors.ClusterNodeRoleMiss
    assert err.msg == "Provide at least one etcd node"
    assert errors.ClusterNodeRoleMiss.msg != err.msg


def test_template_call_keeps_default_message():
    err = errors.ClusterNotFound()
    assert err.msg == errors.ClusterNotFound.msg
    assert err.status == 404


def test_duplicate_code_rejected():
    with pytest.raises(ValueError):
        errors.new_error(400, errors.ClusterNotFound.code, "again")


def test_err_to_code_follows_cause():
    try:
        try:
            raise errors.LastTaskNotComplete()
        except errors.BusinessError as e:
            raise RuntimeError("wrapped") from e
    except RuntimeError as wrapped:
        assert errors.err_to_code(wrapped) == errors.LastTaskNotComplete.code


def test_err_to_code_defaults():
    assert errors.err_to_code(None) == errors.OK
    assert errors.err_to_code(KeyError("x")) == errors.UNKNOWN
    assert errors.err_to_status(KeyError("x")) == errors.UNKNOWN
    assert errors.err_to_status(errors.ClusterNameConflict()) == 409
