"""Tests for overdue_reminder.data_loader -- CSV/XLSX streaming.

Files are generated under tmp_path; XLSX fixtures are built with openpyxl.
"""

import io
from datetime import datetime

import openpyxl
import pytest

from overdue_reminder.data_loader import (
    iter_chunks,
    iter_csv_chunks,
    iter_xlsx_chunks,
    load_upload,
)
from overdue_reminder.models import FieldMap

CSV_TEXT = (
    "Customer,Email,Invoice,Amount,Due Date\n"
    "Acme,ap@acme.test,INV-1,100.00,2024-01-15\n"
    "\n"
    "Acme,,CN-1,(40.00),2024-01-20\n"
    ",,,,\n"
    "Beta,ar@beta.test,INV-7,\"1,250.00\",2024-02-01\n"
    ",orphan@x.test,INV-9,10,2024-02-01\n"
)


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "ar.csv"
    path.write_text(CSV_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def xlsx_file(tmp_path):
    path = tmp_path / "ar.xlsx"
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Overdue"
    ws.append(["Customer Name", "Email Address", "Invoice Number", "Balance", "Due Date"])
    ws.append(["Acme", "ap@acme.test", 1001, 100.0, datetime(2024, 1, 15)])
    ws.append([None, None, None, None, None])
    ws.append(["Acme", None, "CN-1", -40.0, datetime(2024, 1, 20)])
    ws.append(["Beta", "ar@beta.test", 1002, "$1,250.00", "2024-02-01"])
    other = wb.create_sheet("Notes")
    other.append(["Customer", "Amount"])
    other.append(["Gamma", 5])
    wb.save(path)
    return path


# ============================================================================
# CSV
# ============================================================================

class TestCsvChunks:

    def test_reads_records_and_skips_blank_lines(self, csv_file):
        chunks = list(iter_csv_chunks(csv_file))
        records = [r for c in chunks for r in c.data]
        assert len(records) == 4
        assert chunks[0].fields == ["Customer", "Email", "Invoice", "Amount", "Due Date"]
        assert records[2]["Amount"] == "1,250.00"

    def test_chunk_size(self, csv_file):
        chunks = list(iter_csv_chunks(csv_file, chunk_size=3))
        assert [len(c.data) for c in chunks] == [3, 1]
        assert all(c.fields == chunks[0].fields for c in chunks)

    def test_exact_multiple_of_chunk_size(self, csv_file):
        chunks = list(iter_csv_chunks(csv_file, chunk_size=2))
        assert [len(c.data) for c in chunks] == [2, 2]

    def test_bytes_source_with_bom(self):
        data = ("\ufeff" + CSV_TEXT).encode("utf-8")
        chunks = list(iter_csv_chunks(data))
        assert chunks[0].fields[0] == "Customer"

    def test_text_stream_source(self):
        chunks = list(iter_csv_chunks(io.StringIO(CSV_TEXT)))
        assert sum(len(c.data) for c in chunks) == 4

    def test_header_whitespace_is_stripped(self):
        chunks = list(iter_csv_chunks(io.StringIO(" Customer , Amount \nAcme,5\n")))
        assert chunks[0].fields == ["Customer", "Amount"]
        assert chunks[0].data == [{"Customer": "Acme", "Amount": "5"}]

    def test_header_only(self):
        chunks = list(iter_csv_chunks(io.StringIO("Customer,Amount\n")))
        assert len(chunks) == 1
        assert chunks[0].data == []
        assert chunks[0].fields == ["Customer", "Amount"]

    def test_semicolon_delimiter(self):
        chunks = list(iter_csv_chunks(io.StringIO("Customer;Amount\nAcme;1.234,56\n"), delimiter=";"))
        assert chunks[0].data == [{"Customer": "Acme", "Amount": "1.234,56"}]

    def test_extra_cells_are_dropped(self):
        chunks = list(iter_csv_chunks(io.StringIO("Customer,Amount\nAcme,5,extra\n")))
        assert chunks[0].data == [{"Customer": "Acme", "Amount": "5"}]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            list(iter_csv_chunks(tmp_path / "nope.csv"))


# ============================================================================
# XLSX
# ============================================================================

class TestXlsxChunks:

    def test_first_sheet(self, xlsx_file):
        chunks = list(iter_xlsx_chunks(xlsx_file))
        records = [r for c in chunks for r in c.data]
        assert chunks[0].fields == ["Customer Name", "Email Address", "Invoice Number",
                                    "Balance", "Due Date"]
        assert [r["Customer Name"] for r in records] == ["Acme", "Acme", "Beta"]
        assert records[0]["Balance"] == 100.0

    def test_named_sheet(self, xlsx_file):
        records = [r for c in iter_xlsx_chunks(xlsx_file, sheet_name="Notes") for r in c.data]
        assert records == [{"Customer": "Gamma", "Amount": 5}]

    def test_unknown_sheet(self, xlsx_file):
        with pytest.raises(ValueError, match="not found"):
            list(iter_xlsx_chunks(xlsx_file, sheet_name="Missing"))

    def test_bytes_buffer(self, xlsx_file):
        buffer = io.BytesIO(xlsx_file.read_bytes())
        records = [r for c in iter_xlsx_chunks(buffer) for r in c.data]
        assert len(records) == 3

    def test_chunk_size(self, xlsx_file):
        chunks = list(iter_xlsx_chunks(xlsx_file, chunk_size=2))
        assert [len(c.data) for c in chunks] == [2, 1]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            list(iter_xlsx_chunks(tmp_path / "nope.xlsx"))


# ============================================================================
# Dispatch / load_upload
# ============================================================================

class TestLoadUpload:

    def test_iter_chunks_dispatches_by_suffix(self, csv_file, xlsx_file):
        assert list(iter_chunks(csv_file))[0].fields[0] == "Customer"
        assert list(iter_chunks(xlsx_file))[0].fields[0] == "Customer Name"

    def test_csv_upload(self, csv_file):
        session = load_upload(csv_file)
        assert session.field_map.customer == "Customer"
        assert session.field_map.amount == "Amount"
        assert session.record_count == 4
        assert session.skipped_count == 1
        assert [r.amount for r in session.rows] == [100.0, -40.0, 1250.0]

        ledgers = session.ledgers()
        assert list(ledgers) == ["Acme", "Beta"]
        assert ledgers["Acme"].net_payable == pytest.approx(60.0)
        assert ledgers["Acme"].email == "ap@acme.test"

    def test_xlsx_upload(self, xlsx_file):
        session = load_upload(xlsx_file)
        assert session.field_map.to_dict() == {
            "customer": "Customer Name",
            "email": "Email Address",
            "invoice": "Invoice Number",
            "amount": "Balance",
            "dueDate": "Due Date",
        }
        rows = session.rows
        assert rows[0].invoice == "1001"
        assert rows[0].due_date == "2024-01-15"
        assert [r.amount for r in rows] == [100.0, -40.0, 1250.0]

    def test_chunked_upload_matches_single_chunk(self, csv_file):
        whole = load_upload(csv_file)
        chunked = load_upload(csv_file, chunk_size=1)
        assert chunked.rows == whole.rows

    def test_explicit_field_map(self, csv_file):
        session = load_upload(csv_file, field_map=FieldMap(customer="Customer", amount="Email"))
        assert all(r.amount == 0.0 for r in session.rows)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_upload(tmp_path / "missing.csv")
