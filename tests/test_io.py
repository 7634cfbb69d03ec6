import io

import pytest
from openpyxl import Workbook

from model_ingest.errors import UserInputError
from model_ingest.io import read_csv_text, read_table


def test_csv_header_is_first_non_empty_line():
    table = read_csv_text("\n,,\nName,Height,\nAda,170,x\n\n,,\nBea,165\n")
    assert table.headers == ["Name", "Height"]
    assert table.rows == [{"Name": "Ada", "Height": "170"}, {"Name": "Bea", "Height": "165"}]
    assert len(table) == 2


def test_csv_limit_and_sample():
    text = "Name\n" + "\n".join(f"m{i}" for i in range(10))
    table = read_csv_text(text, limit=4)
    assert len(table) == 4
    assert table.sample(2) == [{"Name": "m0"}, {"Name": "m1"}]
    assert table.sample(-1) == []


def test_read_table_decodes_bom_and_latin1():
    assert read_table("\ufeffName\nZoë\n".encode("utf-8"), "a.csv").rows == [{"Name": "Zoë"}]
    assert read_table("Name\nZoë\n".encode("latin-1"), "a.csv").rows == [{"Name": "Zoë"}]


def test_read_table_rejects_empty():
    with pytest.raises(UserInputError):
        read_table(b"", "a.csv")


def test_read_table_xlsx():
    wb = Workbook()
    ws = wb.active
    ws.append(["Name", "Height", "Shoe"])
    ws.append(["Ada", 170.0, 6.5])
    ws.append([None, None, None])
    ws.append(["Bea", 165, None])
    buf = io.BytesIO()
    wb.save(buf)

    table = read_table(buf.getvalue(), "roster.xlsx")
    assert table.headers == ["Name", "Height", "Shoe"]
    assert table.rows == [
        {"Name": "Ada", "Height": "170", "Shoe": "6.5"},
        {"Name": "Bea", "Height": "165", "Shoe": ""},
    ]
