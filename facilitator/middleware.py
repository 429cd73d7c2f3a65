import uuid

REQUEST_ID_HEADER = 'X-Request-ID'


class RequestIDMiddleware:
    """Tag each request with ``request.request_id`` and echo it in the response."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.request_id = request_id
        response = self.get_response(request)
        response[REQUEST_ID_HEADER] = request_id
        return response


def get_request_id(request) -> str:
    return getattr(request, 'request_id', None) or '-'
