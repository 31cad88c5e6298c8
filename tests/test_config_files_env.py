import textwrap

import pytest

from apicsync.core.config import load_config
from apicsync.core.models import Operation
from apicsync.core.reconciler import DeleteStrategy


def _write(tmp_path, text):
    f = tmp_path / "apicsync.yml"
    f.write_text(textwrap.dedent(text), encoding="utf-8")
    return (str(f),)


def test_file_then_env_then_cli_precedence(tmp_path, monkeypatch):
    files = _write(tmp_path, """
      apic:
        base_url: "https://file.example"
        username: "file-user"
      logging:
        console_level: "WARNING"
      retry:
        max_attempts: 5
    """)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("APICSYNC_APIC__BASE_URL", "https://env.example")
    monkeypatch.setenv("APICSYNC_APIC__VERIFY_TLS", "false")
    monkeypatch.setenv("APICSYNC_RETRY__DELAY_SEC", "0.25")

    cfg = load_config({"apic": {"base_url": "https://cli.example"}}, files=files)

    assert cfg.apic.base_url == "https://cli.example"   # CLI wins
    assert cfg.apic.verify_tls is False                   # env coerced to bool
    assert cfg.apic.username == "file-user"               # from file
    assert cfg.logging.console_level == "WARNING"
    assert cfg.retry.max_attempts == 5
    assert cfg.retry.delay_sec == 0.25                    # env coerced to float


def test_env_interpolation_and_dotenv(tmp_path, monkeypatch):
    files = _write(tmp_path, """
      apic:
        base_url: "https://apic.example"
        username: "admin"
        password: "${APIC_PASSWORD}"
    """)
    (tmp_path / ".env").write_text("APIC_PASSWORD=from-dotenv\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    # registered so teardown removes whatever python-dotenv exported
    monkeypatch.setenv("APIC_PASSWORD", "placeholder")
    monkeypatch.delenv("APIC_PASSWORD")

    cfg = load_config(files=files)
    assert cfg.apic.password == "from-dotenv"


def test_retry_operations_build_policies(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("APICSYNC_RETRY__OPERATIONS", "create, read")
    cfg = load_config(
        {"apic": {"base_url": "https://a", "username": "u"}, "retry": {"max_attempts": 2, "delay_sec": 0}},
        files=(),
    )
    assert cfg.retry.operations == ["create", "read"]
    policies = cfg.retry.policies()
    assert policies[Operation.CREATE].total_attempts == 3
    assert policies[Operation.READ].total_attempts == 3
    assert policies[Operation.UPDATE].total_attempts == 1
    assert policies[Operation.DELETE].total_attempts == 1
    opts = cfg.reconciler_options()
    assert opts["delete_strategy"] is DeleteStrategy.DELETE


def test_defaults_retry_everything_with_jitter(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = load_config({"apic": {"base_url": "https://a", "username": "u"}}, files=())
    policy = cfg.retry.policies()[Operation.DELETE]
    assert (policy.max_attempts, policy.delay_sec, policy.jitter_sec) == (3, 30.0, 0.005)
    assert len(cfg.run_id) == 12


def test_validation_lists_every_problem(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ValueError) as ei:
        load_config(
            {"retry": {"operations": ["create", "explode"], "max_attempts": -1},
             "reconcile": {"delete_strategy": "nuke"}},
            files=(),
        )
    msg = str(ei.value)
    assert "apic.base_url" in msg and "apic.username" in msg
    assert "explode" in msg
    assert "retry.max_attempts" in msg
    assert "nuke" in msg
