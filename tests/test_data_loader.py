"""
Test Suite for Data Loader Module
=================================

Tests for configuration loading, acquisition and data file selection.
"""

import zipfile
from unittest import mock

import pandas as pd
import pytest
import requests

from orf_pipeline import data_loader
from orf_pipeline.data_loader import (
    load_config,
    download_archive,
    extract_archive,
    find_data_file,
    read_table,
    validate_schema,
    load_dataset,
)
from orf_pipeline.exceptions import AcquisitionError, NoDataFileError, SchemaError
from orf_pipeline.preprocessing import PARAMETERS


class TestLoadConfig:

    def test_load(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("split:\n  seed: 7\n  ratio: 0.75\n")

        config = load_config(str(path))

        assert config['split'] == {'seed': 7, 'ratio': 0.75}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(str(path)) == {}

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "absent.yaml"))


class TestFindDataFile:

    def test_spreadsheet_preferred(self, tmp_path):
        (tmp_path / "a_data.csv").write_text("x\n1\n")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "z_atlas.xlsx").write_bytes(b"")

        assert find_data_file(str(tmp_path)).name == "z_atlas.xlsx"

    def test_first_spreadsheet(self, tmp_path):
        (tmp_path / "b.xlsx").write_bytes(b"")
        (tmp_path / "a.xls").write_bytes(b"")

        assert find_data_file(str(tmp_path)).name == "a.xls"

    def test_csv_fallback(self, tmp_path):
        (tmp_path / "readme.txt").write_text("notes")
        (tmp_path / "b.csv").write_text("x\n1\n")
        (tmp_path / "a.csv").write_text("x\n1\n")

        assert find_data_file(str(tmp_path)).name == "a.csv"

    def test_no_data_file(self, tmp_path):
        (tmp_path / "readme.txt").write_text("notes")

        with pytest.raises(NoDataFileError):
            find_data_file(str(tmp_path))

    def test_missing_directory(self, tmp_path):
        with pytest.raises(NoDataFileError):
            find_data_file(str(tmp_path / "absent"))


class TestExtractArchive:

    def test_extract(self, tmp_path):
        archive = tmp_path / "atlas.zip"
        with zipfile.ZipFile(archive, 'w') as zf:
            zf.writestr("Atlas/data.csv", "ORF\n0.3\n")
            zf.writestr("Atlas/notes.txt", "hello")

        files = extract_archive(str(archive), str(tmp_path / "out"))

        assert files == ["Atlas/data.csv", "Atlas/notes.txt"]
        assert (tmp_path / "out" / "Atlas" / "data.csv").exists()

    def test_corrupt_archive(self, tmp_path):
        archive = tmp_path / "broken.zip"
        archive.write_bytes(b"not a zip")

        with pytest.raises(AcquisitionError):
            extract_archive(str(archive), str(tmp_path / "out"))


class TestDownloadArchive:

    def _session(self, chunks=(b"PK", b"data")):
        session = mock.MagicMock()
        response = session.get.return_value.__enter__.return_value
        response.iter_content.return_value = list(chunks)
        return session

    def test_download(self, tmp_path):
        session = self._session()
        dest = tmp_path / "raw" / "atlas.zip"

        with mock.patch.object(data_loader, '_build_session', return_value=session):
            path = download_archive("https://example.test/atlas.zip", str(dest), timeout=5)

        assert path.read_bytes() == b"PKdata"
        session.get.assert_called_once_with(
            "https://example.test/atlas.zip", timeout=5, stream=True
        )
        session.close.assert_called_once()

    def test_existing_file_reused(self, tmp_path):
        dest = tmp_path / "atlas.zip"
        dest.write_bytes(b"cached")
        session = self._session()

        with mock.patch.object(data_loader, '_build_session', return_value=session):
            download_archive("https://example.test/atlas.zip", str(dest))

        session.get.assert_not_called()
        assert dest.read_bytes() == b"cached"

    def test_network_failure(self, tmp_path):
        session = mock.MagicMock()
        session.get.side_effect = requests.ConnectionError("unreachable")
        dest = tmp_path / "atlas.zip"

        with mock.patch.object(data_loader, '_build_session', return_value=session):
            with pytest.raises(AcquisitionError) as exc_info:
                download_archive("https://example.test/atlas.zip", str(dest))

        assert exc_info.value.stage == 'acquisition'
        assert not dest.exists()

    def test_http_error(self, tmp_path):
        session = self._session()
        response = session.get.return_value.__enter__.return_value
        response.raise_for_status.side_effect = requests.HTTPError("404")

        with mock.patch.object(data_loader, '_build_session', return_value=session):
            with pytest.raises(AcquisitionError):
                download_archive("https://example.test/atlas.zip", str(tmp_path / "a.zip"))

    def test_write_failure_leaves_no_archive(self, tmp_path):
        """A download cut off mid-stream is fetched again on the next run."""
        def truncated(chunk_size):
            yield b"PK\x03\x04partial"
            raise OSError("No space left on device")

        broken = self._session()
        broken.get.return_value.__enter__.return_value.iter_content.side_effect = truncated
        dest = tmp_path / "atlas.zip"

        with mock.patch.object(data_loader, '_build_session', return_value=broken):
            with pytest.raises(AcquisitionError) as exc_info:
                download_archive("https://example.test/atlas.zip", str(dest))

        assert exc_info.value.stage == 'acquisition'
        assert not dest.exists()
        assert list(tmp_path.iterdir()) == []

        retry = self._session()
        with mock.patch.object(data_loader, '_build_session', return_value=retry):
            download_archive("https://example.test/atlas.zip", str(dest))

        retry.get.assert_called_once()
        assert dest.read_bytes() == b"PKdata"


class TestReadAndValidate:

    def test_read_csv(self, tmp_path, reservoir_factory):
        path = tmp_path / "atlas.csv"
        reservoir_factory(8).to_csv(path, index=False)

        df = read_table(str(path))

        assert df.shape == (8, 9)

    def test_read_excel_first_sheet(self, tmp_path, reservoir_factory):
        path = tmp_path / "atlas.xlsx"
        with pd.ExcelWriter(path) as writer:
            reservoir_factory(6).to_excel(writer, sheet_name="Atlas", index=False)
            pd.DataFrame({'other': [1]}).to_excel(writer, sheet_name="Notes", index=False)

        df = read_table(str(path))

        assert len(df) == 6
        assert 'ORF' in df.columns

    def test_unsupported_type(self, tmp_path):
        path = tmp_path / "atlas.json"
        path.write_text("{}")

        with pytest.raises(NoDataFileError):
            read_table(str(path))

    def test_missing_target(self, reservoir_factory):
        df = reservoir_factory(3).drop(columns=['ORF'])

        with pytest.raises(SchemaError):
            validate_schema(df, 'ORF', PARAMETERS)

    def test_missing_parameters_reported(self, reservoir_factory):
        df = reservoir_factory(3).drop(columns=['PI', 'SW'])

        assert validate_schema(df, 'ORF', PARAMETERS) == ['SW', 'PI']

    def test_load_dataset_local(self, tmp_path, reservoir_factory):
        path = tmp_path / "atlas.csv"
        reservoir_factory(8).to_csv(path, index=False)

        df = load_dataset({}, data_path=str(path), parameters=PARAMETERS)

        assert len(df) == 8

    def test_load_dataset_from_archive(self, tmp_path, reservoir_factory):
        archive = tmp_path / "atlas.zip"
        with zipfile.ZipFile(archive, 'w') as zf:
            zf.writestr("Atlas/atlas.csv", reservoir_factory(5).to_csv(index=False))
        config = {'data': {
            'url': "https://example.test/atlas.zip",
            'download_path': str(archive),
            'extract_dir': str(tmp_path / "extracted"),
        }}

        with mock.patch.object(data_loader, '_build_session') as build:
            df = load_dataset(config, parameters=PARAMETERS)

        build.assert_not_called()
        assert len(df) == 5


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
