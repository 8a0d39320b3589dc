from starlette.middleware.base import BaseHTTPMiddleware
import gzip
from starlette.responses import Response as StarletteResponse


class ConditionalGZipMiddleware(BaseHTTPMiddleware):
    """Gzip JSON and text responses larger than ``minimum_size`` for clients
    that accept it. Rendered slices (image/png, image/jpeg) are already
    compressed and pass through untouched.
    """
    def __init__(self, app, minimum_size: int = 1024):
        super().__init__(app)
        self.minimum_size = minimum_size

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        if response.headers.get('content-encoding'):
            return response

        if 'gzip' not in request.headers.get('accept-encoding', '').lower():
            return response

        content_type = response.headers.get('content-type', '').lower()
        if not (content_type.startswith('text/') or 'json' in content_type):
            return response

        # call_next always hands back a streaming response
        body = b''
        async for chunk in response.body_iterator:
            body += chunk

        headers = dict(response.headers)
        if len(body) < self.minimum_size:
            return StarletteResponse(content=body, status_code=response.status_code,
                                     headers=headers)

        gzipped = gzip.compress(body)
        headers.pop('content-length', None)
        headers['content-encoding'] = 'gzip'
        vary = headers.get('vary', '')
        if 'accept-encoding' not in vary.lower():
            headers['vary'] = (vary + ', Accept-Encoding').strip(', ')

        return StarletteResponse(content=gzipped, status_code=response.status_code,
                                 headers=headers)
