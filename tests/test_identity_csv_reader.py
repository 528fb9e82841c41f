from __future__ import annotations

import io
import unittest

from app.errors import BatchSetupError
from app.services.identity_csv_reader import CSVFormatError, read_identity_csv


def _upload(text: str, encoding: str = "utf-8") -> io.BytesIO:
    return io.BytesIO(text.encode(encoding))


class TestReadIdentityCSV(unittest.TestCase):
    def test_reads_rows_and_strips_bom_from_header(self) -> None:
        raw = _upload("\ufeffFirst Name,Last Name,Email\nAsha,Rao,asha@college.edu\n")

        parsed = read_identity_csv(raw)

        self.assertEqual(parsed.headers, ["First Name", "Last Name", "Email"])
        self.assertEqual(parsed.rows, [{"First Name": "Asha", "Last Name": "Rao", "Email": "asha@college.edu"}])
        self.assertEqual(parsed.size_bytes, len(raw.getvalue()))

    def test_skips_completely_empty_rows(self) -> None:
        parsed = read_identity_csv(_upload("firstName,lastName,email\nA,B,a@x.com\n,,\n  , ,\nC,D,c@x.com\n"))

        self.assertEqual(len(parsed.rows), 2)
        self.assertEqual(parsed.skipped_empty_rows, 2)

    def test_keeps_rows_with_partial_values(self) -> None:
        parsed = read_identity_csv(_upload("firstName,lastName,email\n,,only@x.com\n"))

        self.assertEqual(parsed.rows, [{"firstName": "", "lastName": "", "email": "only@x.com"}])

    def test_missing_required_columns(self) -> None:
        with self.assertRaises(CSVFormatError) as ctx:
            read_identity_csv(_upload("firstName,phone\nA,123\n"))

        self.assertIn("last_name", str(ctx.exception))
        self.assertIn("email", str(ctx.exception))

    def test_empty_file(self) -> None:
        with self.assertRaises(CSVFormatError):
            read_identity_csv(_upload(""))

    def test_non_utf8_file(self) -> None:
        with self.assertRaises(BatchSetupError):
            read_identity_csv(_upload("firstName,lastName,email\nJosé,Núñez,j@x.com\n", encoding="latin-1"))

    def test_stream_is_left_open_for_the_caller(self) -> None:
        raw = _upload("firstName,lastName,email\nA,B,a@x.com\n")

        read_identity_csv(raw)

        self.assertFalse(raw.closed)


if __name__ == "__main__":
    unittest.main()
