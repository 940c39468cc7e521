from __future__ import annotations

import requests

from activity_tracker.analytics.policy import DEFAULT_POLICY, MatchingPolicy, PolicyProvider
from activity_tracker.analytics.positions import PositionDescriptor, StationCategory

from conftest import FakeHTTPSession, FakeResponse

REMOTE = {
    'version': 'remote-7',
    'viable_suffixes': {'TWR': ['twr'], 'FSS': ['FSS']},
    'topdown': {'eddf': ['EDGG_X']},
    'center_aliases': [['EDWW_W_CTR', 'EDWW_CTR'], ['broken']],
    'region_prefixes': {'GER': ['ED']},
}


def test_from_dict_skips_unknown_entries():
    policy = MatchingPolicy.from_dict(REMOTE)

    assert policy.version == 'remote-7'
    assert policy.suffixes_for(StationCategory.TOWER) == frozenset({'TWR'})
    assert policy.suffixes_for(StationCategory.APPROACH) == frozenset()
    assert policy.suffixes_for(None) == frozenset()
    assert policy.topdown_for('EDDF') == ('EDGG_X',)
    assert policy.is_alias('EDWW_W_CTR', 'EDWW_CTR')
    assert policy.prefixes_for_region('GER') == ('ED',)


def test_static_policy_without_remote_url():
    http = FakeHTTPSession()
    provider = PolicyProvider(session=http)

    assert provider.policy_for(PositionDescriptor.parse('EDDF_TWR')) is DEFAULT_POLICY
    assert http.calls == []


def test_remote_policy_is_fetched_per_region_and_cached():
    http = FakeHTTPSession([FakeResponse(REMOTE)])
    provider = PolicyProvider(remote_url='https://policies.example/{region}.json', ttl_seconds=300, session=http)

    first = provider.policy_for(PositionDescriptor.parse('EDDF_TWR'))
    second = provider.policy_for(PositionDescriptor.parse('EDDH_TWR'))

    assert first.version == 'remote-7'
    assert second is first
    assert len(http.calls) == 1
    assert http.calls[0][1] == 'https://policies.example/ED.json'


def test_region_descriptor_fetches_the_region_document():
    http = FakeHTTPSession([FakeResponse(REMOTE)])
    provider = PolicyProvider(remote_url='https://policies.example/{region}.json', ttl_seconds=300, session=http)

    policy = provider.policy_for(PositionDescriptor.region('GER'))

    assert http.calls[0][1] == 'https://policies.example/GER.json'
    assert policy.prefixes_for_region('GER') == ('ED',)


def test_remote_failure_falls_back_to_static_and_retries_later():
    http = FakeHTTPSession([
        requests.ConnectionError('down'),
        FakeResponse(ValueError('bad json')),
        FakeResponse(REMOTE),
    ])
    provider = PolicyProvider(remote_url='https://policies.example/{region}.json', ttl_seconds=300, session=http)
    descriptor = PositionDescriptor.parse('EDDF_TWR')

    assert provider.policy_for(descriptor) is DEFAULT_POLICY
    assert provider.policy_for(descriptor) is DEFAULT_POLICY
    assert provider.policy_for(descriptor).version == 'remote-7'


def test_invalidate_forces_reload():
    http = FakeHTTPSession([FakeResponse(REMOTE), FakeResponse(dict(REMOTE, version='remote-8'))])
    provider = PolicyProvider(remote_url='https://policies.example/{region}.json', ttl_seconds=300, session=http)
    descriptor = PositionDescriptor.parse('EDDF_TWR')

    assert provider.policy_for(descriptor).version == 'remote-7'
    provider.invalidate()
    assert provider.policy_for(descriptor).version == 'remote-8'
