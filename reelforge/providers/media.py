import base64

import httpx

from reelforge.core.exceptions import ProviderError


async def url_to_data_uri(url: str, client: httpx.AsyncClient) -> str:
    """
    Download an image and inline it as a data: URI.

    FAL cannot always fetch Airtable attachment URLs, so references are sent inline.
    """
    if url.startswith("data:"):
        return url

    response = await client.get(url, follow_redirects=True)
    if not response.is_success:
        raise ProviderError(f"Failed to fetch image: {response.status_code}")

    content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip() or "image/jpeg"
    encoded = base64.b64encode(response.content).decode("ascii")
    return f"data:{content_type};base64,{encoded}"
