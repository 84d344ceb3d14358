"""Validation of spectrum files before they are handed to a search engine.

Search engines require unique and present spectrum titles, and at least one MS2 spectrum. Depending on the
configured policies, files violating these requirements are rejected or repaired in place.
"""

import logging
import os
from collections import Counter
from dataclasses import dataclass

from searchcli.constants.keys import DuplicateTitlePolicy, MissingTitlePolicy
from searchcli.exceptions import SpectrumFileFormatError
from searchcli.reporting.waiting_handler import WaitingHandler
from searchcli.spectrum.index import SpectrumFileIndex
from searchcli.spectrum.mgf import Spectrum, rewrite_spectrum_file

logger = logging.getLogger()


@dataclass
class ValidationResult:
    accepted: bool
    path: str
    index: SpectrumFileIndex | None = None
    reason: str = ""


class _UniqueTitles:
    """Hands out titles that are not used in the file yet, bumping `_<k>` suffixes on collisions."""

    def __init__(self, used_titles):
        self._used = set(used_titles)

    def claim(self, title: str, k: int = 2) -> str:
        candidate = title
        while candidate in self._used:
            candidate = f"{title}_{k}"
            k += 1
        self._used.add(candidate)
        return candidate


def add_missing_spectrum_titles(path: str, index: SpectrumFileIndex) -> None:
    """Give every untitled spectrum the title `Spectrum <position>`, position being 1-based in file order."""
    titles = _UniqueTitles(index.spectrum_titles)
    position = 0

    def _transform(spectrum: Spectrum) -> list[Spectrum]:
        nonlocal position
        position += 1
        if spectrum.title is not None:
            return [spectrum]
        return [spectrum.with_title(titles.claim(f"Spectrum {position}"))]

    rewrite_spectrum_file(path, _transform)


def rename_duplicate_spectrum_titles(path: str, index: SpectrumFileIndex) -> None:
    """Keep the first occurrence of a title, rename the k-th occurrence to `<title>_<k>`."""
    titles = _UniqueTitles(index.spectrum_titles)
    seen = Counter()

    def _transform(spectrum: Spectrum) -> list[Spectrum]:
        title = spectrum.title
        if title is None or title not in index.duplicated_titles:
            return [spectrum]

        seen[title] += 1
        if seen[title] == 1:
            return [spectrum]
        return [spectrum.with_title(titles.claim(title, k=seen[title]))]

    rewrite_spectrum_file(path, _transform)


def remove_duplicate_spectrum_titles(path: str, index: SpectrumFileIndex) -> None:
    """Keep only the first spectrum of every title."""
    seen = set()

    def _transform(spectrum: Spectrum) -> list[Spectrum]:
        title = spectrum.title
        if title is None or title not in index.duplicated_titles:
            return [spectrum]
        if title in seen:
            return []
        seen.add(title)
        return [spectrum]

    rewrite_spectrum_file(path, _transform)


class SpectrumValidator:
    def __init__(
        self,
        waiting_handler: WaitingHandler,
        missing_title_policy: str = MissingTitlePolicy.FAIL,
        duplicate_title_policy: str = DuplicateTitlePolicy.FAIL,
    ) -> None:
        """Check spectrum files for titles, peak picking and MS2 content and repair them if allowed.

        Parameters
        ----------
        waiting_handler : WaitingHandler
            Receives every warning and repair notice.

        missing_title_policy : str
            `fail` rejects files with untitled spectra, `insert` adds titles.

        duplicate_title_policy : str
            `fail` only warns, `rename` makes titles unique, `drop` removes all but the first spectrum per title.

        """
        if missing_title_policy not in MissingTitlePolicy.get_values():
            raise ValueError(f"Unknown missing title policy: {missing_title_policy}")
        if duplicate_title_policy not in DuplicateTitlePolicy.get_values():
            raise ValueError(
                f"Unknown duplicate title policy: {duplicate_title_policy}"
            )

        self.waiting_handler = waiting_handler
        self.missing_title_policy = missing_title_policy
        self.duplicate_title_policy = duplicate_title_policy

    def _reject(self, path: str, reason: str, index=None) -> ValidationResult:
        self.waiting_handler.append_line(f"Warning: {reason}", is_error=True)
        return ValidationResult(False, path, index=index, reason=reason)

    def validate(self, path: str) -> ValidationResult:
        """Validate a single spectrum file, rewriting it in place if a policy requires it.

        Duplicated titles never lead to a rejection: with the `fail` policy they are only reported.
        """
        path = str(path)
        absolute_path = os.path.abspath(path)
        name = os.path.basename(path)
        self.waiting_handler.append_line(f"Validating MGF file: {absolute_path}")

        try:
            index = SpectrumFileIndex.from_file(path)
        except FileNotFoundError:
            return self._reject(path, f"Spectrum file not found: {absolute_path}")
        except SpectrumFileFormatError as e:
            return self._reject(
                path, f"Could not parse {absolute_path}: {e.detail_msg}. File will be ignored."
            )
        except OSError as e:
            return self._reject(
                path, f"Could not read {absolute_path}: {e}. File will be ignored."
            )

        try:
            if index.n_titled < index.n_spectra:
                if self.missing_title_policy == MissingTitlePolicy.FAIL:
                    problem = (
                        "No spectrum titles found"
                        if index.n_titled == 0
                        else "Spectrum titles missing"
                    )
                    return self._reject(
                        path,
                        f"{problem} in file: {absolute_path}! Titles are mandatory. "
                        f"See the missing_titles option. File will be ignored.",
                        index=index,
                    )

                self.waiting_handler.append_line(
                    f"Adding missing spectrum titles in file: {absolute_path}"
                )
                add_missing_spectrum_titles(path, index)
                index = SpectrumFileIndex.from_file(path)

            if not index.peak_picked:
                self.waiting_handler.append_line(
                    f"Warning: The file '{name}' contains zero intensity peaks. "
                    f"It is highly recommended to apply peak picking before starting a search!",
                    is_error=True,
                )

            if index.max_peak_count == 0:
                return self._reject(
                    path,
                    f"No MS2 spectra found in file: {name}! File will be ignored.",
                    index=index,
                )

            if index.n_duplicated > 0:
                self.waiting_handler.append_line(
                    f"Warning: The spectrum file {name} contains {index.n_duplicated} non-unique spectrum titles!",
                    is_error=True,
                )

                if self.duplicate_title_policy == DuplicateTitlePolicy.RENAME:
                    self.waiting_handler.append_line(
                        f"Renaming duplicated spectrum titles in file: {absolute_path}"
                    )
                    rename_duplicate_spectrum_titles(path, index)
                    index = SpectrumFileIndex.from_file(path)

                elif self.duplicate_title_policy == DuplicateTitlePolicy.DROP:
                    self.waiting_handler.append_line(
                        f"Removing spectra with duplicated titles in file: {absolute_path}"
                    )
                    remove_duplicate_spectrum_titles(path, index)
                    index = SpectrumFileIndex.from_file(path)

        except OSError as e:
            return self._reject(
                path,
                f"Could not rewrite {absolute_path}: {e}. File will be ignored.",
                index=index,
            )

        return ValidationResult(True, path, index=index)

    def validate_files(self, paths: list[str]) -> list[ValidationResult]:
        """Validate files one after the other, stopping early if the run is canceled."""
        results = []
        for path in paths:
            if self.waiting_handler.is_canceled():
                break
            results.append(self.validate(path))
        return results
