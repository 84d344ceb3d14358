"""This module provides unit tests for searchcli.spectrum.mgf."""

import io
import os

import numpy as np
import pytest
from conftest import mgf_block, read_text, write_mgf

from searchcli.exceptions import SpectrumFileFormatError
from searchcli.spectrum.mgf import (
    Spectrum,
    iter_spectra,
    read_mgf_entries,
    rewrite_spectrum_file,
)


def test_spectrum_parses_params_and_peaks():
    spectrum = Spectrum(
        [
            "BEGIN IONS",
            "TITLE=scan=1",
            "PEPMASS=512.3 1000",
            "CHARGE=2+ and 3+",
            "RTINSECONDS=12.5",
            "100.5 10",
            "200.5\t0",
            "END IONS",
        ]
    )

    assert spectrum.title == "scan=1"
    assert spectrum.precursor_mz == 512.3
    assert spectrum.precursor_charge == 3
    assert spectrum.retention_time == 12.5
    assert spectrum.n_peaks == 2
    np.testing.assert_array_equal(spectrum.mz, [100.5, 200.5])
    np.testing.assert_array_equal(spectrum.intensity, [10.0, 0.0])


def test_spectrum_empty_title_is_none():
    spectrum = Spectrum(["BEGIN IONS", "TITLE=", "END IONS"])

    assert spectrum.title is None
    assert spectrum.n_peaks == 0
    assert spectrum.precursor_mz is None


def test_spectrum_invalid_peak_line_raises():
    with pytest.raises(SpectrumFileFormatError):
        Spectrum(["BEGIN IONS", "100.5 abc", "END IONS"])


def test_with_title_replaces_existing_title():
    spectrum = Spectrum(["BEGIN IONS", "TITLE=a", "100 1", "END IONS"], offset=7)

    # when
    renamed = spectrum.with_title("b")

    assert renamed.lines == ["BEGIN IONS", "TITLE=b", "100 1", "END IONS"]
    assert renamed.offset == 7
    assert spectrum.title == "a"


def test_with_title_inserts_after_begin_ions():
    spectrum = Spectrum(["BEGIN IONS", "PEPMASS=1", "END IONS"])

    # when
    titled = spectrum.with_title("Spectrum 1")

    assert titled.lines == ["BEGIN IONS", "TITLE=Spectrum 1", "PEPMASS=1", "END IONS"]
    assert titled.title == "Spectrum 1"


def test_read_mgf_entries_yields_spectra_and_other_lines_with_offsets():
    first = mgf_block(title="a")
    content = "COM=header\n" + first + "\n" + mgf_block(title="b")

    # when
    entries = list(read_mgf_entries(io.BytesIO(content.encode())))

    assert entries[0] == "COM=header"
    assert isinstance(entries[1], Spectrum)
    assert entries[1].offset == len("COM=header\n")
    assert entries[2] == ""
    assert entries[3].title == "b"
    assert entries[3].offset == len("COM=header\n") + len(first) + 1


def test_read_mgf_entries_unterminated_block_raises():
    content = "BEGIN IONS\nTITLE=a\n100 1\n"

    with pytest.raises(SpectrumFileFormatError):
        list(read_mgf_entries(io.BytesIO(content.encode())))


def test_read_mgf_entries_nested_block_raises():
    content = "BEGIN IONS\nTITLE=a\nBEGIN IONS\nEND IONS\n"

    with pytest.raises(SpectrumFileFormatError):
        list(read_mgf_entries(io.BytesIO(content.encode())))


def test_iter_spectra(titled_mgf):
    titles = [spectrum.title for spectrum in iter_spectra(titled_mgf)]

    assert titles == ["scan=1", "scan=2", "scan=3"]


def test_rewrite_identity_reproduces_file(tmp_path):
    path = write_mgf(
        tmp_path / "a.mgf",
        [mgf_block(title="a"), mgf_block(title="b")],
        header="MASS=Monoisotopic\n",
    )
    before = read_text(path)

    # when
    rewrite_spectrum_file(path, lambda spectrum: [spectrum])

    assert read_text(path) == before
    assert not os.path.exists(path + ".tmp")


def test_rewrite_can_drop_spectra(tmp_path):
    path = write_mgf(tmp_path / "a.mgf", [mgf_block(title="a"), mgf_block(title="b")])

    # when
    rewrite_spectrum_file(
        path, lambda spectrum: [] if spectrum.title == "a" else [spectrum]
    )

    assert read_text(path) == mgf_block(title="b")


def test_rewrite_failure_leaves_original_untouched(tmp_path):
    path = write_mgf(tmp_path / "a.mgf", [mgf_block(title="a"), mgf_block(title="b")])
    before = read_text(path)

    def _failing_transform(spectrum):
        if spectrum.title == "b":
            raise OSError("disk full")
        return [spectrum]

    # when
    with pytest.raises(OSError):
        rewrite_spectrum_file(path, _failing_transform)

    assert read_text(path) == before
    assert not os.path.exists(path + ".tmp")
