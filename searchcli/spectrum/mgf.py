"""Streaming reader and writer for Mascot Generic Format (MGF) files.

Spectra keep their raw text lines so that writing a spectrum back reproduces it exactly. Text outside of
`BEGIN IONS` / `END IONS` blocks (global parameters, comments) is passed through unchanged by rewrites.
"""

import logging
import os
import typing
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

import numpy as np

from searchcli.constants.keys import SpectrumFileSuffixes
from searchcli.exceptions import SpectrumFileFormatError

logger = logging.getLogger()

BEGIN_IONS = "BEGIN IONS"
END_IONS = "END IONS"
TITLE = "TITLE"
PEPMASS = "PEPMASS"
CHARGE = "CHARGE"
RTINSECONDS = "RTINSECONDS"

ENCODING = "utf-8"


@dataclass
class Spectrum:
    """A single MGF spectrum.

    `lines` holds the raw lines of the block, including `BEGIN IONS` and `END IONS`, without line terminators.
    `offset` is the byte position of the `BEGIN IONS` line in the file the spectrum was read from.
    """

    lines: list[str]
    offset: int = 0
    params: dict[str, str] = field(init=False, compare=False)
    mz: np.ndarray = field(init=False, repr=False, compare=False)
    intensity: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        self.params = {}
        mz_values, intensity_values = [], []

        for line in self.lines[1:-1]:
            stripped = line.strip()
            if not stripped or stripped[0] in "#;!/":
                continue
            if stripped[0].isdigit() or stripped[0] in "+-.":
                parts = stripped.split()
                try:
                    mz_values.append(float(parts[0]))
                    intensity_values.append(float(parts[1]) if len(parts) > 1 else 0.0)
                except ValueError:
                    raise SpectrumFileFormatError(
                        "", f"invalid peak line '{stripped}'"
                    ) from None
            elif "=" in stripped:
                key, value = stripped.split("=", 1)
                self.params.setdefault(key.strip().upper(), value.strip())

        self.mz = np.array(mz_values, dtype=np.float64)
        self.intensity = np.array(intensity_values, dtype=np.float64)

    @property
    def title(self) -> str | None:
        """Title of the spectrum, None if it is absent or empty."""
        title = self.params.get(TITLE)
        return title if title else None

    @property
    def n_peaks(self) -> int:
        return len(self.mz)

    @property
    def precursor_mz(self) -> float | None:
        pepmass = self.params.get(PEPMASS)
        if not pepmass:
            return None
        try:
            return float(pepmass.split()[0])
        except ValueError:
            return None

    @property
    def precursor_charge(self) -> int | None:
        charge = self.params.get(CHARGE)
        if not charge:
            return None

        charges = []
        for value in charge.replace(",", " ").split():
            value = value.replace("and", "").strip()
            digits = value.rstrip("+-")
            if digits.isdigit():
                charges.append(int(digits))
        return max(charges) if charges else None

    @property
    def retention_time(self) -> float | None:
        rt = self.params.get(RTINSECONDS)
        if not rt:
            return None
        try:
            return float(rt.split("-")[-1])
        except ValueError:
            return None

    def with_title(self, title: str) -> "Spectrum":
        """Copy of the spectrum with its TITLE line replaced, or inserted after `BEGIN IONS`."""
        lines = list(self.lines)
        for i, line in enumerate(lines):
            if line.strip().upper().startswith(f"{TITLE}="):
                lines[i] = f"{TITLE}={title}"
                break
        else:
            lines.insert(1, f"{TITLE}={title}")

        return Spectrum(lines, offset=self.offset)

    def to_text(self) -> str:
        return "\n".join(self.lines) + "\n"


def read_mgf_entries(
    handle: typing.BinaryIO, path: str = ""
) -> Iterator[Spectrum | str]:
    """Stream an MGF file opened in binary mode.

    Yields a `Spectrum` per ion block and the raw text of every line outside of an ion block.

    Raises
    ------
    SpectrumFileFormatError
        Nested or unterminated ion blocks, or unparsable peak lines.
    """
    offset = 0
    block: list[str] | None = None
    block_offset = 0

    for raw_line in handle:
        line = raw_line.decode(ENCODING, errors="replace").rstrip("\r\n")
        line_offset = offset
        offset += len(raw_line)

        marker = line.strip().upper()
        if marker == BEGIN_IONS:
            if block is not None:
                raise SpectrumFileFormatError(
                    path, f"'{BEGIN_IONS}' at byte {line_offset} inside an open ion block"
                )
            block = [line]
            block_offset = line_offset
        elif block is not None:
            block.append(line)
            if marker == END_IONS:
                try:
                    spectrum = Spectrum(block, offset=block_offset)
                except SpectrumFileFormatError as e:
                    raise SpectrumFileFormatError(path, e.detail_msg) from None
                block = None
                yield spectrum
        else:
            yield line

    if block is not None:
        raise SpectrumFileFormatError(
            path, f"ion block starting at byte {block_offset} is not terminated"
        )


def iter_spectra(path: str) -> Iterator[Spectrum]:
    """Iterate over the spectra of an MGF file."""
    with open(path, "rb") as f:
        for entry in read_mgf_entries(f, path):
            if isinstance(entry, Spectrum):
                yield entry


def rewrite_spectrum_file(
    path: str, transform: Callable[[Spectrum], list[Spectrum]]
) -> None:
    """Rewrite an MGF file in place, replacing every spectrum by the result of `transform`.

    The new content is written to a sibling temporary file which replaces the original only once it has been
    completely written and closed. On failure the temporary file is removed and the original is left untouched.
    """
    rewrite_path = str(path) + SpectrumFileSuffixes.REWRITE

    try:
        with open(path, "rb") as src, open(
            rewrite_path, "w", encoding=ENCODING, newline="\n"
        ) as dst:
            for entry in read_mgf_entries(src, str(path)):
                if isinstance(entry, Spectrum):
                    for spectrum in transform(entry):
                        dst.write(spectrum.to_text())
                else:
                    dst.write(entry + "\n")
    except BaseException:
        if os.path.exists(rewrite_path):
            os.remove(rewrite_path)
        raise

    os.replace(rewrite_path, path)
    logger.debug(f"Rewrote {path}")
