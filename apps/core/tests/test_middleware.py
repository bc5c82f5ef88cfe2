"""
Tests for request tracing middleware.
"""
import logging
import threading

from django.http import HttpResponse
from django.test import RequestFactory, SimpleTestCase

from apps.core.middleware import RequestContextFilter, RequestIDMiddleware


class RequestIDMiddlewareTestCase(SimpleTestCase):
    """Each request carries a request id."""

    def test_generates_request_id(self):
        seen = {}

        def view(request):
            seen['request_id'] = request.request_id
            seen['thread'] = getattr(threading.current_thread(), 'request_id', None)
            return HttpResponse('ok')

        response = RequestIDMiddleware(view)(RequestFactory().get('/api/me'))

        self.assertTrue(seen['request_id'])
        self.assertEqual(seen['thread'], seen['request_id'])
        self.assertEqual(response['X-Request-ID'], seen['request_id'])
        self.assertFalse(hasattr(threading.current_thread(), 'request_id'))

    def test_keeps_incoming_request_id(self):
        middleware = RequestIDMiddleware(lambda request: HttpResponse('ok'))

        response = middleware(RequestFactory().get('/api/me', HTTP_X_REQUEST_ID='abc-123'))

        self.assertEqual(response['X-Request-ID'], 'abc-123')


class RequestContextFilterTestCase(SimpleTestCase):
    """Log records pick up the current request id."""

    def test_adds_request_id(self):
        record = logging.LogRecord('apps', logging.INFO, __file__, 1, 'msg', None, None)
        threading.current_thread().request_id = 'req-7'
        try:
            self.assertTrue(RequestContextFilter().filter(record))
        finally:
            del threading.current_thread().request_id

        self.assertEqual(record.request_id, 'req-7')

    def test_without_request(self):
        record = logging.LogRecord('apps', logging.INFO, __file__, 1, 'msg', None, None)

        self.assertTrue(RequestContextFilter().filter(record))
        self.assertFalse(hasattr(record, 'request_id'))
