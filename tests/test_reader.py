"""Tests for reconciler.reader module."""

import io
import json
import zipfile

import pytest

from reconciler.errors import IncompatibilityError, IntegrityError, ValidationError
from reconciler.reader import normalize_whitespace, parse_manifest, read_archive, sha256_hex
from reconciler.writer import build_manifest


def _zip(members: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, 'w') as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buf.getvalue()


def _json(data) -> bytes:
    return json.dumps(data).encode('utf-8')


def _members(events=None) -> dict[str, bytes]:
    return {
        'events.json': _json(events if events is not None else [
            {'id': 'e1', 'name': 'Spring Rally', 'date': '2025-09-15', 'clubId': 'c1'},
        ]),
        'clubs.json': _json([{'id': 'c1', 'name': 'Spring Club', 'zoneId': 'z1'}]),
        'zones.json': _json([{'id': 'z1', 'name': 'North'}]),
        'event-types.json': _json([{'id': 't1', 'name': 'Rally'}]),
    }


def _with_manifest(members: dict[str, bytes], version: str = '1.0') -> dict[str, bytes]:
    manifest = build_manifest(members)
    manifest['version'] = version
    return dict(members, **{'manifest.json': _json(manifest)})


class TestStructure:
    """Required members and JSON shape."""

    def test_reads_valid_archive(self, make_archive):
        archive = read_archive(make_archive())
        assert len(archive.events) == 4
        assert len(archive.clubs) == 2
        assert len(archive.zones) == 2
        assert len(archive.event_types) == 2
        assert archive.events[0].club_id == 'c1'

    def test_not_a_zip(self):
        with pytest.raises(ValidationError):
            read_archive(b'kein zip')

    def test_all_missing_files_reported(self):
        data = _zip({'events.json': _json([])})
        with pytest.raises(ValidationError) as excinfo:
            read_archive(data)
        assert excinfo.value.problems == ['clubs.json', 'zones.json', 'event-types.json']

    def test_every_malformed_member_reported(self):
        members = _members()
        members['events.json'] = b'{kaputt'
        members['clubs.json'] = _json({'id': 'c1'})
        with pytest.raises(ValidationError) as excinfo:
            read_archive(_zip(members))
        problems = excinfo.value.problems
        assert len(problems) == 2
        assert problems[0].startswith('events.json')
        assert problems[1].startswith('clubs.json')

    def test_event_without_name(self):
        members = _members(events=[{'id': 'e1', 'date': '2025-09-15'}])
        with pytest.raises(ValidationError) as excinfo:
            read_archive(_zip(members))
        assert 'events.json[0]' in excinfo.value.problems[0]

    def test_names_whitespace_normalized(self):
        members = _members(events=[{'id': 'e1', 'name': '  Spring  Rally ', 'date': '2025-09-15'}])
        archive = read_archive(_zip(members))
        assert archive.events[0].name == 'Spring Rally'

    def test_unknown_event_keys_kept(self):
        members = _members(events=[{'id': 'e1', 'name': 'Rally', 'date': '2025-09-15',
                                    'venue': 'Harbour'}])
        archive = read_archive(_zip(members))
        assert archive.events[0].to_dict()['venue'] == 'Harbour'

    def test_ancillary_files_collected(self, make_archive):
        data = make_archive(ancillary={'schedules/e1.pdf': b'%PDF'})
        archive = read_archive(data)
        assert archive.ancillary_files == {'schedules/e1.pdf': b'%PDF'}


class TestManifest:
    """Manifest version and checksum validation."""

    def test_valid_manifest(self, make_archive):
        archive = read_archive(make_archive(), validate_manifest=True)
        assert archive.stats.has_manifest
        assert archive.stats.manifest_version == '1.0'
        assert archive.stats.checksum_valid

    def test_without_manifest(self, make_archive):
        archive = read_archive(make_archive(include_manifest=False), validate_manifest=True)
        assert not archive.stats.has_manifest
        assert archive.stats.manifest_version == 'unknown'

    def test_unsupported_version(self):
        data = _zip(_with_manifest(_members(), version='2.0'))
        with pytest.raises(IncompatibilityError):
            read_archive(data, validate_manifest=True)

    def test_unsupported_version_tolerated_without_validation(self):
        archive = read_archive(_zip(_with_manifest(_members(), version='2.0')))
        assert archive.stats.manifest_version == '2.0'

    def test_tampered_member(self):
        members = _with_manifest(_members())
        members['events.json'] = _json([{'id': 'e1', 'name': 'Manipuliert', 'date': '2025-09-15'}])
        with pytest.raises(IntegrityError) as excinfo:
            read_archive(_zip(members), validate_manifest=True)
        assert excinfo.value.problems == ['events.json']
        assert 'events.json' in str(excinfo.value)

    def test_tampered_member_without_validation(self):
        members = _with_manifest(_members())
        members['zones.json'] = _json([{'id': 'z1', 'name': 'Nord'}])
        archive = read_archive(_zip(members))
        assert not archive.stats.checksum_valid
        assert archive.zones[0].name == 'Nord'

    def test_listed_file_absent_from_archive_ignored(self):
        members = _members()
        manifest = build_manifest(dict(members, **{'schedules/x.pdf': b'x'}))
        members['manifest.json'] = _json(manifest)
        archive = read_archive(_zip(members), validate_manifest=True)
        assert archive.stats.checksum_valid

    def test_files_as_mapping(self):
        raw = _json({
            'version': '1.0',
            'files': {'events.json': {'size': 2, 'checksum': sha256_hex(b'[]').upper()}},
        })
        manifest = parse_manifest(raw)
        assert manifest.files[0].name == 'events.json'
        assert manifest.files[0].checksum == sha256_hex(b'[]')

    def test_manifest_without_version(self):
        with pytest.raises(ValidationError):
            parse_manifest(_json({'files': []}))


class TestStats:
    """Archive statistics."""

    def test_stats(self, make_archive):
        stats = read_archive(make_archive()).stats
        assert stats.total_events == 4
        assert stats.date_range.start == '2025-09-15'
        assert stats.date_range.end == '2026-01-10'
        assert stats.zones == ['North', 'South']
        assert stats.clubs == ['Spring Club', 'Harbour Club']
        assert stats.event_types == ['Rally', 'Trial']

    def test_empty_archive_has_no_date_range(self, make_archive):
        stats = read_archive(make_archive(events=[])).stats
        assert stats.total_events == 0
        assert not stats.date_range.is_set()


class TestNormalizeWhitespace:

    def test_collapses_runs(self):
        assert normalize_whitespace('a \t\n b') == 'a b'

    def test_strips(self):
        assert normalize_whitespace('  a  ') == 'a'
