from bridge.connection_pool import ConnectionPool


def test_injected_pool_is_kept(services, connector):
    assert services.pool._connector is connector
    assert services.pool.active_count == 0


def test_empty_pool_is_still_truthy():
    assert ConnectionPool(connector=lambda host, port, timeout: None)


def test_shutdown_closes_sessions(services):
    services.pool.acquire("10.0.0.1", 4370)
    assert services.shutdown() == 1
    assert services.pool.active_count == 0
