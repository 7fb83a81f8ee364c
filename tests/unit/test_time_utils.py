from rangewatch.utils.time import bucket_start, to_ms, window_start_ms

def test_bucket_start_floors_to_interval():
    assert bucket_start(0, 10_000) == 0
    assert bucket_start(9_999, 10_000) == 0
    assert bucket_start(10_000, 10_000) == 10_000
    assert bucket_start(1_700_000_004_321, 10_000) == 1_700_000_000_000

def test_to_ms_units():
    assert to_ms(1_700_000_000) == 1_700_000_000_000
    assert to_ms(1_700_000_000.5) == 1_700_000_000_500
    assert to_ms(1_700_000_000_000) == 1_700_000_000_000
    assert to_ms(1_700_000_000_000_000) == 1_700_000_000_000
    assert to_ms(1_700_000_000_000_000_000) == 1_700_000_000_000

def test_window_start():
    now = 10 * 3_600_000
    assert window_start_ms("15m", now) == now - 900_000
    assert window_start_ms("4h", now) == now - 4 * 3_600_000
    assert window_start_ms("all", now) == 0
    assert window_start_ms("2w", now) == now - 3_600_000
    assert window_start_ms("24h", now) == 0
