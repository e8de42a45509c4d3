"""
Integration tests for Flask routes and full request/response flows.
Tests status codes, JSON bodies and persistence of assembled inputs.
"""

import unittest
import sys
import os
from unittest import mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault('DATABASE_URL', 'sqlite://')

import app as app_module
from app import app, db, CircuitInputRecord
from dkim_resolver import DKIMKeyResolver
from tests.email_fixtures import generator_output, make_generator
from tests.resolver_interface import (
    ARCHIVE_URL,
    PRIMARY_URL,
    SECONDARY_URL,
    TEST_CONFIG,
    MockResponse,
    doh_response,
    make_http_client,
)

ADDRESS = '0x' + '00' * 19 + '2a'


class BaseTestCase(unittest.TestCase):
    """Base test case with Flask test client setup."""

    def setUp(self):
        self.app = app
        self.app.config['TESTING'] = True
        self.client = self.app.test_client()
        self.ctx = self.app.app_context()
        self.ctx.push()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def use_responses(self, responses_map):
        client, calls = make_http_client(responses_map)
        patcher = mock.patch.object(app_module, 'dkim_resolver',
                                    DKIMKeyResolver(TEST_CONFIG, http_client=client))
        patcher.start()
        self.addCleanup(patcher.stop)
        return calls


class TestDKIMKeyRoute(BaseTestCase):
    """Tests for /api/dkim-key."""

    def test_key_resolved(self):
        self.use_responses({PRIMARY_URL: doh_response('"v=DKIM1; p=ABCD1234"')})
        response = self.client.get('/api/dkim-key?selector=sel&domain=example.com')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {
            'selector': 'sel',
            'domain': 'example.com',
            'publicKey': 'ABCD1234',
            'source': 'doh_primary',
        })

    def test_missing_params(self):
        response = self.client.get('/api/dkim-key?selector=sel')
        self.assertEqual(response.status_code, 400)

    def test_invalid_name(self):
        response = self.client.get('/api/dkim-key?selector=' + 'a' * 64 + '&domain=example.com')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['error'], 'InvalidRecordName')

    def test_exhausted(self):
        self.use_responses({
            PRIMARY_URL: doh_response(),
            SECONDARY_URL: doh_response(),
            ARCHIVE_URL: MockResponse(json_data=[]),
        })
        response = self.client.get('/api/dkim-key?selector=sel&domain=example.com')
        self.assertEqual(response.status_code, 404)
        body = response.get_json()
        self.assertEqual(body['error'], 'ResolutionExhausted')
        self.assertEqual(body['code'], 'ENODATA')
        self.assertIn('sel._domainkey.example.com', body['message'])

    def test_malformed(self):
        self.use_responses({PRIMARY_URL: doh_response('v=DKIM1')})
        response = self.client.get('/api/dkim-key?selector=sel&domain=example.com')
        self.assertEqual(response.status_code, 422)

    def test_archive_unavailable(self):
        self.use_responses({
            PRIMARY_URL: doh_response(),
            SECONDARY_URL: doh_response(),
            ARCHIVE_URL: MockResponse(status_code=500),
        })
        response = self.client.get('/api/dkim-key?selector=sel&domain=example.com')
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.get_json()['error'], 'SourceUnavailable')


class TestCircuitInputsRoute(BaseTestCase):
    """Tests for /api/circuit-inputs."""

    def setUp(self):
        super().setUp()
        self._saved_generator = self.app.config.get('EMAIL_INPUT_GENERATOR')
        self.generator = make_generator(generator_output())
        self.app.config['EMAIL_INPUT_GENERATOR'] = self.generator

    def tearDown(self):
        self.app.config['EMAIL_INPUT_GENERATOR'] = self._saved_generator
        super().tearDown()

    def post(self, **payload):
        body = {'email': 'raw email', 'address': ADDRESS, 'keywords': ['keyword1', 'keyword2']}
        body.update(payload)
        return self.client.post('/api/circuit-inputs', json=body)

    def test_inputs_created_and_stored(self):
        response = self.post()
        self.assertEqual(response.status_code, 201)
        body = response.get_json()
        inputs = body['inputs']
        self.assertEqual(inputs['keywordIndex'], '6,19')
        self.assertTrue(inputs['fromDomainMatch'])
        self.assertTrue(inputs['toDomainMatch'])
        self.assertEqual(inputs['address'], '42')

        record = db.session.get(CircuitInputRecord, body['id'])
        self.assertIsNotNone(record)
        self.assertEqual(record.keyword_index, '6,19')
        self.assertEqual(record.keywords, ['keyword1', 'keyword2'])

        fetched = self.client.get(f"/api/circuit-inputs/{body['id']}")
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(fetched.get_json()['inputs'], inputs)

    def test_generator_called_with_email(self):
        self.post(email='the raw message')
        self.assertEqual(self.generator.calls[-1], ('the raw message', 'email contains keywords @'))

    def test_missing_keyword(self):
        response = self.post(keywords=['absent'])
        self.assertEqual(response.status_code, 422)
        body = response.get_json()
        self.assertEqual(body['error'], 'MissingKeyword')
        self.assertIn('absent', body['message'])

    def test_invalid_address(self):
        response = self.post(address='0xnothex')
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.get_json()['error'], 'InvalidAddress')

    def test_bad_payload(self):
        response = self.post(keywords='keyword1')
        self.assertEqual(response.status_code, 400)
        response = self.client.post('/api/circuit-inputs', data='not json')
        self.assertEqual(response.status_code, 400)

    def test_non_object_payload(self):
        response = self.client.post('/api/circuit-inputs', json=[1, 2])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['code'], 'EINVAL')

    def test_no_generator_configured(self):
        self.app.config['EMAIL_INPUT_GENERATOR'] = None
        response = self.post()
        self.assertEqual(response.status_code, 503)

    def test_bad_generator_path(self):
        self.app.config['EMAIL_INPUT_GENERATOR'] = 'no-colon-here'
        response = self.post()
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.get_json()['error'], 'GeneratorError')

    def test_unknown_record(self):
        response = self.client.get('/api/circuit-inputs/999999')
        self.assertEqual(response.status_code, 404)


if __name__ == '__main__':
    unittest.main()
