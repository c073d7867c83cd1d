# FILE: tests/integration/test_store_pipeline.py
# Integration tests for selector, marker, stats and a full cycle against Postgres.
from datetime import date, datetime
import psycopg
import pytest
from forwarder.marker import DeliveryMarker
from forwarder.materializer import RecordMaterializer
from forwarder.selector import RowSelector
from forwarder.stats import AggregateRefresher
from forwarder.worker import Forwarder, Outcome

pytestmark = pytest.mark.integration

D = datetime(2024, 5, 10, 8, 30, 0)

def test_selector_returns_oldest_unsent(provider, insert_row):
    a = insert_row(DateTimeStamp=D, Sent=True)
    b = insert_row(DateTimeStamp=D, SKU="s")
    insert_row(DateTimeStamp=D)
    row = RowSelector(provider).select_oldest_unsent()
    assert row.id == b and row.sku == "s" and row.sent is False
    assert a < b

def test_selector_empty_table(provider):
    assert RowSelector(provider).select_oldest_unsent() is None
    assert RowSelector(provider).oldest_unsent_id() is None

def test_selector_reads_past_locked_rows(provider, insert_row, pg_url):
    first = insert_row(DateTimeStamp=D)
    second = insert_row(DateTimeStamp=D)
    sel = RowSelector(provider)
    with psycopg.connect(pg_url) as holder:
        holder.execute('SELECT 1 FROM "Records" WHERE "ID" = %s FOR UPDATE', (first,))
        assert sel.select_oldest_unsent().id == second
        assert sel.oldest_unsent_id() == first
    assert sel.select_oldest_unsent().id == first

def test_select_then_mark_is_strictly_ascending(provider, insert_row):
    ids = [insert_row(DateTimeStamp=D) for _ in range(4)]
    sel, marker = RowSelector(provider), DeliveryMarker(provider)
    seen = []
    while (row := sel.select_oldest_unsent()) is not None:
        assert marker.mark_sent(row.id)
        seen.append(row.id)
    assert seen == ids

def test_mark_sent_is_conditional(provider, insert_row, fetch_sent):
    rid = insert_row(DateTimeStamp=D)
    marker = DeliveryMarker(provider)
    assert marker.mark_sent(rid) is True
    assert fetch_sent(rid) is True
    assert marker.mark_sent(rid) is False
    assert marker.mark_sent(rid + 1000) is False

def test_aggregate_counters_match_rows(provider, insert_row):
    insert_row(DateTimeStamp=D, SKU="A", Pallet_Number=1, OCR_Description_1="x", Quantity=2, Batch_Number="b",
               Barcode="c", OCR_Description_2="", Cross_Check=True, Label_Printed=True, Check_Scan_Result="ok",
               Valid=True, Sent=True, Complete=True)
    insert_row(DateTimeStamp=D.replace(hour=23, minute=59, second=59), OCR_Description_1="",
               Check_Scan_Result="", Duplicate=True, ImageSent=True)
    insert_row(DateTimeStamp=D.replace(hour=0, minute=0, second=0), SKU="B", OCR_Description_2="y",
               Label_Printed=True, Label_Applied=True, Complete=True)
    insert_row(DateTimeStamp=datetime(2024, 5, 11, 0, 0, 0), SKU="Z", Cross_Check=True)

    ref = AggregateRefresher(provider)
    assert ref.refresh(date(2024, 5, 10)) == 1
    got = ref.fetch(date(2024, 5, 10)).model_dump(by_alias=True)
    expected = {
        "TotalScans": 3, "SKU_Count": 2, "Pallet_Count": 1, "OCR_Description_1_Count": 2, "Quantity_Count": 1,
        "Batch_Number_Count": 1, "Barcode_Count": 1, "OCR_Description_2_Count": 2, "Cross_Check_Count": 1,
        "Label_Printed_Count": 2, "Label_Applied_Count": 1, "Check_Scan_Result_Count": 2, "Valid_Count": 1,
        "Sent_Count": 1, "ImageSent_Count": 1, "Duplicate_Count": 1, "Complete_Count": 2,
        "IC1_Good_Read_Count": 1, "IC1_No_Read_Count": 2, "IC2_Good_Read_Count": 1, "IC2_No_Read_Count": 2,
        "Cross_Check_Fail_Count": 2, "CheckScan_Good_Read_Count": 1, "CheckScan_No_Read_Count": 2,
    }
    assert got == {"StatDate": date(2024, 5, 10), **expected}

def test_refresh_updates_existing_day(provider, insert_row, pg_url):
    ref = AggregateRefresher(provider)
    insert_row(DateTimeStamp=D)
    ref.refresh(D.date())
    insert_row(DateTimeStamp=D, Valid=True)
    assert ref.refresh(D.date()) == 1
    stats = ref.fetch(D.date())
    assert stats.total_scans == 2 and stats.valid_count == 1
    with psycopg.connect(pg_url) as conn:
        assert conn.execute('SELECT count(*) FROM "DailyStats"').fetchone()[0] == 1

def test_refresh_day_without_rows_writes_zeros(provider):
    ref = AggregateRefresher(provider)
    ref.refresh(date(2030, 1, 1))
    assert ref.fetch(date(2030, 1, 1)).total_scans == 0
    assert ref.fetch(date(2030, 1, 2)) is None

def _forwarder(cell, provider, today=date(2024, 1, 1)):
    return Forwarder(cell, RowSelector(provider), RecordMaterializer(cell), DeliveryMarker(provider),
                     AggregateRefresher(provider), clock=lambda: today)

def test_scenario_single_cycle(pg_cell, provider, insert_row, fetch_sent):
    rid = insert_row(DateTimeStamp=datetime(2024, 1, 1, 10, 0, 0), SKU="A,B")
    res = _forwarder(pg_cell, provider).run_cycle()
    assert res.outcome is Outcome.DELIVERED and res.row_id == rid == 1
    assert res.path.read_bytes().decode("utf-8").startswith('1,2024-01-01T10:00:00,"A,B",')
    assert fetch_sent(rid) is True
    stats = AggregateRefresher(provider).fetch(date(2024, 1, 1))
    assert stats.total_scans == 1 and stats.sku_count == 1 and stats.sent_count == 1

def test_scenario_nothing_to_send(pg_cell, provider, tmp_path):
    res = _forwarder(pg_cell, provider).run_cycle()
    assert res.outcome is Outcome.IDLE
    assert not (tmp_path / "out").exists()
    assert AggregateRefresher(provider).fetch(date(2024, 1, 1)) is None

def test_scenario_bad_replica_still_delivers(pg_url, cell_factory, insert_row, fetch_sent, tmp_path):
    from forwarder.db import ConnectionProvider
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    cell = cell_factory(DATABASE_URL=pg_url, CSV_REPLICA_FOLDER=str(blocker / "replica"))
    provider = ConnectionProvider(cell)
    rid = insert_row(DateTimeStamp=datetime(2024, 1, 1, 10, 0, 0))
    res = _forwarder(cell, provider).run_cycle()
    assert res.outcome is Outcome.DELIVERED and res.path.exists()
    assert fetch_sent(rid) is True

def test_materialized_but_unmarked_row_is_resent_once(pg_cell, provider, insert_row, fetch_sent):
    rid = insert_row(DateTimeStamp=datetime(2024, 1, 1, 10, 0, 0))
    row = RowSelector(provider).select_oldest_unsent()
    first = RecordMaterializer(pg_cell).materialize(row)
    # crash before marking: the next cycle picks the same row up again
    res = _forwarder(pg_cell, provider).run_cycle()
    assert res.outcome is Outcome.DELIVERED and res.path == first
    assert fetch_sent(rid) is True
    assert DeliveryMarker(provider).mark_sent(rid) is False
    assert _forwarder(pg_cell, provider).run_cycle().outcome is Outcome.IDLE
