"""
Google Workspace Admin Directory client.

This module reads organization units and users from the Admin SDK Directory
API. Results are exposed as asynchronous iterators that fetch one page at a
time, following ``nextPageToken`` until the listing is exhausted. Blocking
HTTP calls are run in a worker thread so the event loop stays responsive.

Authentication is either a pre-issued bearer token or a service account with
domain-wide delegation, using the OAuth 2.0 JWT bearer grant.
"""

import asyncio
import json
import logging
import ssl
import time
from dataclasses import dataclass, field
from http.client import HTTPConnection, HTTPSConnection
from typing import Any, AsyncIterator, Dict, List, Optional, Union
from urllib.parse import quote, urlencode, urlparse

from jose import jwk, jwt
from jose.exceptions import JOSEError

from directory_import.cancellation import CancellationToken, ensure_token

logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = 'urn:ietf:params:oauth:grant-type:jwt-bearer'
ASSERTION_LIFETIME = 3600
# Refresh this many seconds before the token actually expires
TOKEN_EXPIRY_MARGIN = 60


class DirectoryAPIError(Exception):
    """Base exception for directory API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DirectoryAuthenticationError(DirectoryAPIError):
    """Raised when authentication to the directory API fails."""
    pass


@dataclass
class RemoteOrgUnit:
    org_unit_path: Optional[str]
    name: Optional[str]
    parent_org_unit_path: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RemoteOrgUnit':
        return cls(
            org_unit_path=data.get('orgUnitPath'),
            name=data.get('name'),
            parent_org_unit_path=data.get('parentOrgUnitPath'),
        )


@dataclass
class RemoteUserName:
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    full_name: Optional[str] = None


@dataclass
class RemotePhone:
    value: Optional[str]
    primary: bool = False
    type: Optional[str] = None


@dataclass
class RemoteUser:
    id: str
    primary_email: Optional[str] = None
    name: RemoteUserName = field(default_factory=RemoteUserName)
    thumbnail_photo_url: Optional[str] = None
    org_unit_path: Optional[str] = None
    phones: List[RemotePhone] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RemoteUser':
        name = data.get('name') or {}
        return cls(
            id=data.get('id'),
            primary_email=data.get('primaryEmail'),
            name=RemoteUserName(
                given_name=name.get('givenName'),
                family_name=name.get('familyName'),
                full_name=name.get('fullName'),
            ),
            thumbnail_photo_url=data.get('thumbnailPhotoUrl'),
            org_unit_path=data.get('orgUnitPath'),
            phones=[
                RemotePhone(
                    value=phone.get('value'),
                    primary=bool(phone.get('primary', False)),
                    type=phone.get('type'),
                )
                for phone in data.get('phones') or []
            ],
        )


class ServiceAccountCredentials:
    """Signs JWT assertions with a service account's private key."""

    def __init__(self, info: Dict[str, Any], scopes: List[str], subject: Optional[str] = None):
        missing = [key for key in ('client_email', 'private_key') if not info.get(key)]
        if missing:
            raise DirectoryAuthenticationError(
                f"Service account info is missing: {', '.join(missing)}")

        self.client_email = info['client_email']
        self.key_id = info.get('private_key_id')
        self.token_uri = info.get('token_uri')
        self.scopes = list(scopes)
        self.subject = subject

        try:
            self._signing_key = jwk.construct(info['private_key'], algorithm='RS256')
        except JOSEError as e:
            raise DirectoryAuthenticationError(f"Invalid service account private key: {e}")

    @classmethod
    def from_file(cls, path: str, scopes: List[str], subject: Optional[str] = None) -> 'ServiceAccountCredentials':
        try:
            with open(path, 'r') as f:
                info = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DirectoryAuthenticationError(f"Cannot read service account file {path}: {e}")
        return cls(info, scopes, subject)

    def build_assertion(self, audience: str, now: Optional[int] = None) -> str:
        """Return a signed RS256 JWT for the token endpoint."""
        now = int(now if now is not None else time.time())

        claims = {
            'iss': self.client_email,
            'scope': ' '.join(self.scopes),
            'aud': audience,
            'iat': now,
            'exp': now + ASSERTION_LIFETIME,
        }
        if self.subject:
            claims['sub'] = self.subject

        headers = {'kid': self.key_id} if self.key_id else None
        return jwt.encode(claims, self._signing_key, algorithm='RS256', headers=headers)


class GoogleDirectoryClient:
    """
    Read-only client for the Admin SDK Directory API.

    Args:
        config: The ``google`` configuration section
    """

    ORG_UNITS_PATH = '/admin/directory/v1/customer/{customer}/orgunits'
    USERS_PATH = '/admin/directory/v1/users'

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.base_url = config.get('base_url', 'https://admin.googleapis.com')
        self.customer = config.get('customer', 'my_customer')
        self.domain = config.get('domain')
        self.page_size = config.get('page_size', 500)
        self.timeout = config.get('timeout', 30)
        self.verify_ssl = config.get('verify_ssl', True)
        self.auth_config = config.get('auth', {})
        self.auth_method = self.auth_config.get('method', 'service_account').lower()

        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None
        self.credentials = None

        self.auth_headers = {}
        self._token_expires_at = None

        self._setup_ssl_context()
        self._setup_authentication()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.host}")
            return

        self.ssl_context = ssl.create_default_context()
        ca_cert_file = self.config.get('ca_cert_file')
        if ca_cert_file:
            self.ssl_context.load_verify_locations(cafile=ca_cert_file)
            logger.debug(f"Using CA certificate file: {ca_cert_file}")

    def _setup_authentication(self):
        """Set up static headers or service account credentials."""
        if self.auth_method == 'token':
            token = self.auth_config.get('token')
            if not token:
                raise DirectoryAuthenticationError("Token auth configured but no token given")
            self.auth_headers['Authorization'] = f"Bearer {token}"
            logger.debug("Configured static bearer token authentication")

        elif self.auth_method == 'service_account':
            scopes = self.auth_config.get('scopes', [])
            subject = self.auth_config.get('delegated_user')
            info = self.auth_config.get('service_account_info')
            if info:
                self.credentials = ServiceAccountCredentials(info, scopes, subject)
            else:
                self.credentials = ServiceAccountCredentials.from_file(
                    self.auth_config['service_account_file'], scopes, subject)
            logger.debug(f"Configured service account authentication for {self.credentials.client_email}")

        else:
            raise DirectoryAuthenticationError(f"Unknown authentication method '{self.auth_method}'")

    def _fetch_access_token(self) -> bool:
        """
        Exchange a signed assertion for an access token.

        Returns:
            True if a token was obtained
        """
        token_url = self.credentials.token_uri or self.auth_config.get(
            'token_url', 'https://oauth2.googleapis.com/token')
        parsed_token_url = urlparse(token_url)

        if parsed_token_url.scheme == 'https':
            token_conn = HTTPSConnection(parsed_token_url.netloc, context=self.ssl_context, timeout=self.timeout)
        else:
            token_conn = HTTPConnection(parsed_token_url.netloc, timeout=self.timeout)

        token_body = urlencode({
            'grant_type': JWT_BEARER_GRANT,
            'assertion': self.credentials.build_assertion(token_url),
        })
        token_headers = {
            'Content-Type': 'application/x-www-form-urlencoded',
            'Accept': 'application/json',
        }

        try:
            logger.debug(f"Requesting access token from {parsed_token_url.netloc}")
            token_conn.request('POST', parsed_token_url.path or '/', token_body, token_headers)
            response = token_conn.getresponse()
            response_data = response.read().decode('utf-8')
        except OSError as e:
            raise DirectoryAPIError(f"Token request failed: {e}")
        finally:
            token_conn.close()

        if response.status != 200:
            logger.error(f"Token request failed: {response.status} {response.reason}")
            return False

        try:
            token_response = json.loads(response_data)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in token response: {e}")
            return False

        access_token = token_response.get('access_token')
        if not access_token:
            logger.error("Token response missing access_token")
            return False

        self.auth_headers['Authorization'] = f"Bearer {access_token}"
        expires_in = int(token_response.get('expires_in', ASSERTION_LIFETIME))
        self._token_expires_at = time.time() + expires_in - TOKEN_EXPIRY_MARGIN
        logger.info(f"Obtained directory access token for {self.credentials.client_email}")
        return True

    def _is_token_valid(self) -> bool:
        return self._token_expires_at is not None and time.time() < self._token_expires_at

    def authenticate(self) -> bool:
        """
        Make sure a usable access token is available.

        Returns:
            True if authentication successful
        """
        if self.credentials is None:
            return True
        if self._is_token_valid():
            logger.debug("Access token still valid")
            return True
        return self._fetch_access_token()

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Make an HTTP request to the directory API.

        Args:
            method: HTTP method
            path: API path relative to base_url
            params: Query string parameters

        Returns:
            Parsed JSON response

        Raises:
            DirectoryAPIError: If the request fails
            DirectoryAuthenticationError: If the credentials are rejected
        """
        full_path = self.base_path + path
        if params:
            full_path += '?' + urlencode(params)

        if not self.authenticate():
            raise DirectoryAuthenticationError("Could not obtain a directory access token")

        # One extra attempt after refreshing an expired or revoked token
        max_auth_retries = 1 if self.credentials is not None else 0
        for auth_attempt in range(max_auth_retries + 1):
            request_headers = dict(self.auth_headers)
            request_headers['Accept'] = 'application/json'

            try:
                conn = self._get_connection()
                logger.debug(f"Making {method} request to {self.host}{full_path}")
                conn.request(method, full_path, None, request_headers)
                response = conn.getresponse()
                response_data = response.read().decode('utf-8')
            except OSError as e:
                self.close_connection()
                raise DirectoryAPIError(f"Connection error to {self.host}: {e}")

            logger.debug(f"Response status: {response.status} {response.reason}")

            if response.status == 401:
                if auth_attempt < max_auth_retries:
                    logger.info("401 received, refreshing directory access token")
                    self._token_expires_at = None
                    if self._fetch_access_token():
                        continue
                raise DirectoryAuthenticationError(
                    f"Authentication failed for {self.host}", status_code=401)

            if response.status >= 400:
                raise DirectoryAPIError(
                    f"HTTP {response.status}: {self._error_message(response_data) or response.reason}",
                    status_code=response.status)

            try:
                return json.loads(response_data) if response_data else {}
            except json.JSONDecodeError as e:
                raise DirectoryAPIError(f"Invalid JSON response from {self.host}: {e}")

        raise DirectoryAuthenticationError(f"Authentication failed for {self.host}", status_code=401)

    @staticmethod
    def _error_message(response_data: str) -> Optional[str]:
        try:
            return json.loads(response_data).get('error', {}).get('message')
        except (ValueError, AttributeError):
            return None

    async def _iterate_pages(self, path: str, params: Dict[str, Any], items_key: str,
                             token: CancellationToken) -> AsyncIterator[Dict[str, Any]]:
        page_token = None
        page_count = 0

        while True:
            token.raise_if_cancelled()

            page_params = dict(params)
            if page_token:
                page_params['pageToken'] = page_token

            page = await asyncio.to_thread(self.request, 'GET', path, page_params)
            page_count += 1
            items = page.get(items_key) or []
            logger.debug(f"Page {page_count}: Retrieved {len(items)} {items_key}")

            for item in items:
                yield item

            page_token = page.get('nextPageToken')
            if not page_token:
                break

    async def stream_org_units(self, token: Optional[CancellationToken] = None) -> AsyncIterator[RemoteOrgUnit]:
        """Yield every organization unit below the customer's root."""
        path = self.ORG_UNITS_PATH.format(customer=quote(self.customer, safe=''))
        async for item in self._iterate_pages(path, {'type': 'all'}, 'organizationUnits', ensure_token(token)):
            yield RemoteOrgUnit.from_api(item)

    async def stream_users(self, token: Optional[CancellationToken] = None) -> AsyncIterator[RemoteUser]:
        """Yield every user of the customer (or of the configured domain)."""
        params = {
            'maxResults': self.page_size,
            'projection': 'full',
            'orderBy': 'email',
        }
        if self.domain:
            params['domain'] = self.domain
        else:
            params['customer'] = self.customer

        async for item in self._iterate_pages(self.USERS_PATH, params, 'users', ensure_token(token)):
            yield RemoteUser.from_api(item)

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except OSError as e:
                logger.warning(f"Error closing connection to {self.host}: {e}")
            finally:
                self.connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connection()
