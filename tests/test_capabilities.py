from script_sandbox import Sandbox, sandbox_capabilities


def test_sandbox_capabilities_describe_in_process_limits() -> None:
    caps = sandbox_capabilities()

    assert caps.supports_cooperative_timeout
    assert caps.supports_sync_loop_interrupt
    assert caps.supports_scope_restriction
    assert not caps.supports_native_call_interrupt
    assert not caps.supports_security_isolation
    assert not caps.guaranteed_stop


def test_capability_rows_and_sandbox_property() -> None:
    rows = dict(sandbox_capabilities().as_rows())

    assert rows["guaranteed_stop"] is False
    assert Sandbox().capabilities == sandbox_capabilities()
