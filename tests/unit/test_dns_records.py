"""
Unit tests for DNSRecordManager.
Tests: name derivation, two-phase cleanup with fallback search, creation,
       sleeper redirect
"""
import pytest

from hostpanel.dns_records import DNSRecordManager
from shared.retry import RetryPolicy


class TestNames:
    """Tests for record-name derivation."""

    def test_normalize_bare_label(self, dns_records):
        assert dns_records.normalize_name('alpha') == 'alpha'

    def test_normalize_strips_suffix(self, dns_records):
        assert dns_records.normalize_name('alpha.example.net') == 'alpha'

    @pytest.mark.parametrize("name_ref", [None, '', 'bad name', 'x.other.org', 42])
    def test_normalize_rejects_unusable(self, dns_records, name_ref):
        assert dns_records.normalize_name(name_ref) is None

    def test_suffix_without_dot(self, fake_dns):
        manager = DNSRecordManager(fake_dns, 'example.net')
        assert manager.root_name('alpha') == 'alpha.example.net'

    def test_record_shapes(self, dns_records):
        assert dns_records.record_shapes('alpha') == [
            ('A', 'alpha.example.net'),
            ('A', 'alpha-api.example.net'),
            ('SRV', '_minecraft._tcp.alpha.example.net'),
        ]


class TestCleanup:
    """Tests for the two-phase cleanup."""

    def test_known_ids_plus_undiscovered_record(self, dns_records, fake_dns):
        """Two stored ids and one record nobody recorded: all three go."""
        fake_dns.add('rec-a', 'A', 'alpha.example.net', '203.0.113.10')
        fake_dns.add('rec-api', 'A', 'alpha-api.example.net', '203.0.113.10')
        fake_dns.add('rec-srv', 'SRV', '_minecraft._tcp.alpha.example.net')

        result = dns_records.cleanup('alpha', ['rec-a', 'rec-api'])

        assert result.complete
        assert sorted(result.deleted_ids) == ['rec-a', 'rec-api', 'rec-srv']
        assert result.fallback_matches_found == 1
        assert fake_dns.records == {}

    def test_records_of_other_servers_untouched(self, dns_records, fake_dns):
        fake_dns.add('rec-a', 'A', 'alpha.example.net', '203.0.113.10')
        fake_dns.add('rec-b', 'A', 'alphabet.example.net', '203.0.113.11')

        dns_records.cleanup('alpha')

        assert list(fake_dns.records) == ['rec-b']

    def test_stale_stored_id(self, dns_records, fake_dns):
        """An id that is already gone on the provider side counts as deleted."""
        result = dns_records.cleanup('alpha', ['rec-gone'])

        assert result.complete
        assert result.deleted_ids == ['rec-gone']

    def test_address_fallback(self, dns_records, fake_dns):
        """No usable name and no ids: fall back to A records by address."""
        fake_dns.add('rec-1', 'A', 'orphan.example.net', '203.0.113.10')
        fake_dns.add('rec-2', 'A', 'orphan-api.example.net', '203.0.113.10')
        fake_dns.add('rec-3', 'A', 'someone.example.net', '203.0.113.99')

        result = dns_records.cleanup(None, [], network_address='203.0.113.10')

        assert sorted(result.deleted_ids) == ['rec-1', 'rec-2']
        assert result.fallback_matches_found == 2
        assert list(fake_dns.records) == ['rec-3']

    def test_no_address_fallback_when_ids_deleted(self, dns_records, fake_dns):
        fake_dns.add('rec-1', 'A', 'orphan.example.net', '203.0.113.10')
        fake_dns.add('rec-2', 'A', 'other.example.net', '203.0.113.10')

        dns_records.cleanup(None, ['rec-1'], network_address='203.0.113.10')

        assert list(fake_dns.records) == ['rec-2']
        assert ('list_by_type_and_content', 'A', '203.0.113.10') not in fake_dns.calls

    def test_nothing_to_do(self, dns_records, fake_dns):
        result = dns_records.cleanup(None)
        assert result.complete
        assert result.deleted_ids == []
        assert fake_dns.calls == []

    def test_failed_delete_is_partial(self, dns_records, fake_dns):
        fake_dns.add('rec-a', 'A', 'alpha.example.net', '203.0.113.10')
        fake_dns.add('rec-api', 'A', 'alpha-api.example.net', '203.0.113.10')
        fake_dns.failing_ids.add('rec-a')

        result = dns_records.cleanup('alpha', ['rec-a', 'rec-api'])

        assert not result.complete
        assert result.failed_ids == ['rec-a']
        assert result.deleted_ids == ['rec-api']
        # Three attempts in phase one, three more when phase two finds it again
        assert fake_dns.calls.count(('delete_by_id', 'rec-a')) == 6

    def test_failed_lookup_is_partial(self, dns_records, fake_dns):
        fake_dns.fail_lookups = True

        result = dns_records.cleanup('alpha')

        assert not result.complete
        assert len(result.failed_lookups) == 3
        assert result.to_dict()['complete'] is False


class TestCreation:
    """Tests for record creation."""

    def test_create_server_records(self, dns_records, fake_dns):
        ids = dns_records.create_server_records('alpha', '203.0.113.10')

        assert len(ids) == 3
        created = {r.name: r for r in fake_dns.records.values()}
        assert created['alpha.example.net'].content == '203.0.113.10'
        assert created['alpha-api.example.net'].record_type == 'A'
        assert created['_minecraft._tcp.alpha.example.net'].record_type == 'SRV'

    def test_create_skips_unusable_name(self, dns_records, fake_dns):
        assert dns_records.create_server_records('not valid', '203.0.113.10') == []
        assert fake_dns.records == {}

    def test_create_is_best_effort(self, dns_records, fake_dns, mocker):
        from hostpanel.providers import ProviderError, DNSRecord

        mocker.patch.object(fake_dns, 'create_record', side_effect=[
            DNSRecord('rec-1', 'A', 'alpha.example.net'),
            ProviderError('dns', 'rate limited', status_code=429),
            DNSRecord('rec-3', 'SRV', '_minecraft._tcp.alpha.example.net'),
        ])

        assert dns_records.create_server_records('alpha', '203.0.113.10') == ['rec-1', 'rec-3']

    def test_sleeper_disabled(self, dns_records, fake_dns):
        assert dns_records.point_at_sleeper('alpha') is None
        assert fake_dns.records == {}

    def test_sleeper_redirect(self, fake_dns):
        manager = DNSRecordManager(
            fake_dns, '.example.net', sleeper_ip='198.51.100.7',
            retry_policy=RetryPolicy(1, 0), sleep=lambda s: None
        )

        record_id = manager.point_at_sleeper('alpha')

        record = fake_dns.records[record_id]
        assert record.name == 'alpha.example.net'
        assert record.content == '198.51.100.7'
        assert ('create_record', 'A', 'alpha.example.net', '198.51.100.7', 60) in fake_dns.calls
