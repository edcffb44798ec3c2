"""
Backblaze B2 storage backend

Reads from B2 are downloaded in full into a named temporary file on the
local disk before being handed back. That makes every stream returned by
B2Bucket.open() file-backed, so a CachedFile in front of this backend will
copy it into the local cache and later reads won't cost another download.

Some B2 calls cost money. The ones this module makes:

Class A Transactions (Free)
b2_hide_file
b2_get_upload_url
b2_upload_file

Class B Transactions ($0.004 per 10,000)
b2_download_file_by_name

Class C Transactions ($0.004 per 1,000)
b2_authorize_account
b2_list_buckets
b2_list_file_names

size() and exists() each cost a class C transaction, which is why CachedFile
answers size() from the local cache when it can.
"""
import base64
import io
import os
import time
import urllib.parse
import hashlib
import hmac
import tempfile
import threading
from logging import getLogger

import requests.exceptions
from django.utils.functional import cached_property

from .storage import StorageBase

logger = getLogger("readthrough.b2")

extra_headers = {
    'User-Agent': 'Readthrough/Python3'
}

# Timeout used in HTTP calls
TIMEOUT = 5

AUTHORIZE_URL = "https://api.backblazeb2.com/b2api/v1/b2_authorize_account"


class B2ResponseError(IOError):
    def __init__(self, data):
        super().__init__(data['message'])
        self.data = data


class B2Bucket(StorageBase):
    """A storage backend for a single B2 bucket

    This object should be thread safe, as it keeps a thread-local
    requests.Session object for API calls, as well as thread-local
    authorization tokens.

    """
    storage_name = "b2"

    def __init__(self,
                 account_id,
                 application_key,
                 bucket_name,
                 ):
        self.account_id = account_id
        self.application_key = application_key
        self.bucket_name = bucket_name

        self._local = threading.local()

    def get_params(self):
        return {
            'account_id': self.account_id,
            'application_key': self.application_key,
            'bucket_name': self.bucket_name,
        }

    @property
    def session(self):
        try:
            return self._local.session
        except AttributeError:
            logger.debug("Initializing session for thread id {}".format(
                threading.get_ident()
            ))
            session = requests.Session()
            session.headers.update(extra_headers)
            self._local.session = session
            return session

    def _post_with_backoff_retry(self, *args, **kwargs):
        """Calls self.session.post with the given arguments

        Connection errors, timeouts and 503 responses are retried with an
        exponential backoff up to 64 seconds. A 429 response waits for as
        long as the Retry-After header asks.
        """
        kwargs.setdefault("timeout", TIMEOUT)

        delay = 1
        max_delay = 64
        while True:
            try:
                response = self.session.post(*args, **kwargs)
            except (requests.exceptions.ConnectionError,
                    requests.exceptions.Timeout):
                if max_delay < delay:
                    logger.info("Timeout in B2 call. Giving up")
                    raise
                logger.debug("Timeout in B2 call, retrying in {}s".format(
                    delay))
                time.sleep(delay)
                delay *= 2
                continue

            if response.status_code == 503:
                if max_delay < delay:
                    logger.info("B2 service unavailable. Giving up")
                    return response
                logger.debug("B2 service unavailable, retrying in "
                             "{}s".format(delay))
                time.sleep(delay)
                delay *= 2
            elif response.status_code == 429:
                retry_after = int(response.headers.get('Retry-After', 1))
                logger.debug("B2 returned 429 Too Many Requests. "
                             "Retrying in {}s".format(retry_after))
                time.sleep(retry_after)
                delay = 1
            else:
                return response

    def _authorize_account(self):
        """Calls b2_authorize_account to get a session authorization token

        Sets the thread-local authorization_token, api_url and download_url,
        or raises an IOError with a description of the error.
        """
        logger.debug("Acquiring authorization token for thread id {}".format(
            threading.get_ident()
        ))
        credentials = "{}:{}".format(self.account_id, self.application_key)
        response = self._post_with_backoff_retry(
            AUTHORIZE_URL,
            headers={
                'Authorization': 'Basic {}'.format(
                    base64.b64encode(credentials.encode("ASCII")).decode("ASCII")
                ),
            },
            json={},
        )

        try:
            data = response.json()
        except ValueError:
            response.raise_for_status()
            raise IOError("Invalid json response from B2")

        if response.status_code != 200:
            raise IOError("{}: {}".format(response.status_code,
                                          data['message']))

        self._local.authorization_token = data['authorizationToken']
        self._local.api_url = data['apiUrl']
        self._local.download_url = data['downloadUrl']

    def _ensure_authorized(self):
        if (getattr(self._local, "api_url", None) is None or
            getattr(self._local, "authorization_token", None) is None
        ):
            self._authorize_account()

    def _call_api(self, api_name, params):
        """Calls the given API with the given json params

        Authorizes first if this thread has no token yet. An expired token is
        refreshed once and the call retried.

        Returns the response json object, or raises B2ResponseError
        """
        self._ensure_authorized()

        response = self._post_with_backoff_retry(
            "{}/b2api/v1/{}".format(self._local.api_url, api_name),
            headers={
                'Authorization': self._local.authorization_token,
            },
            json=params,
        )
        logger.debug("{} {} {:.2f}s".format(
            api_name,
            response.status_code,
            response.elapsed.total_seconds(),
        ))

        try:
            data = response.json()
        except ValueError:
            response.raise_for_status()
            raise IOError("Invalid json response from B2 on call to {}".format(api_name))

        if response.status_code == 401 and data.get('code') == "expired_auth_token":
            self._local.api_url = None
            self._local.authorization_token = None
            logger.info("Auth token expired")
            return self._call_api(api_name, params)

        if response.status_code != 200:
            raise B2ResponseError(data)

        return data

    @cached_property
    def bucket_id(self):
        """The bucket ID, looked up by name once per instance

        This costs one class C transaction
        """
        data = self._call_api("b2_list_buckets", {'accountId': self.account_id})
        for bucketinfo in data['buckets']:
            if bucketinfo['bucketName'] == self.bucket_name:
                return bucketinfo['bucketId']

        raise IOError("No such bucket name {}".format(self.bucket_name))

    def _get_upload_url(self):
        logger.debug("Getting a new upload url")
        data = self._call_api("b2_get_upload_url",
                              {'bucketId': self.bucket_id})
        self._local.upload_url = data['uploadUrl']
        self._local.upload_token = data['authorizationToken']

    def _forget_upload_url(self):
        self._local.upload_url = None
        self._local.upload_token = None

    def upload_file(self, name, content):
        """Calls b2_upload_file to upload the given data to the given name

        :param content: A file-like object open for reading in binary mode.
            It must be seekable, as it's read once to compute the SHA1 and
            again for each upload attempt.

        :returns: the object metadata dict returned by B2
        """
        logger.info("Uploading {!r}".format(name))

        content.seek(0, os.SEEK_END)
        filesize = content.tell()

        content.seek(0)
        digest = hashlib.sha1()
        for chunk in iter(lambda: content.read(io.DEFAULT_BUFFER_SIZE), b""):
            digest.update(chunk)

        headers = {
            'X-Bz-File-Name': urllib.parse.quote(name, encoding="utf-8"),
            'Content-Type': "b2/x-auto",
            'Content-Length': str(filesize),
            'X-Bz-Content-Sha1': digest.hexdigest(),
        }

        # Most upload failures are handled by fetching a new upload url and
        # trying again right away
        last_error = "Upload failed, unknown reason"
        for _ in range(5):
            if getattr(self._local, "upload_url", None) is None:
                self._get_upload_url()

            headers['Authorization'] = self._local.upload_token
            content.seek(0)

            try:
                response = self.session.post(
                    self._local.upload_url,
                    headers=headers,
                    timeout=TIMEOUT,
                    data=content,
                )
            except (requests.exceptions.ConnectionError,
                    requests.exceptions.Timeout) as e:
                logger.info("Error when uploading ({})".format(e))
                last_error = str(e)
                self._forget_upload_url()
                continue

            logger.debug("b2_upload_file {} {:.2f}s".format(
                response.status_code,
                response.elapsed.total_seconds(),
            ))

            try:
                response_data = response.json()
            except ValueError:
                raise IOError("Invalid json returned from B2 API")

            if (response.status_code in (401, 408) or
                    500 <= response.status_code <= 599):
                logger.info("Upload attempt failed with {}".format(
                    response.status_code))
                last_error = response_data.get('message', last_error)
                self._forget_upload_url()
                continue

            if response.status_code != 200:
                raise B2ResponseError(response_data)

            return response_data

        raise IOError(last_error)

    def open(self, name):
        """Downloads a file by name into a temporary file

        Returns the temporary file, open for reading in binary mode and
        positioned at the start. The file is removed when closed.

        Raises IOError if there was a problem downloading the file, including
        a SHA1 mismatch.

        This costs one class B transaction
        """
        logger.debug("Downloading {}".format(name))
        self._ensure_authorized()

        response = self.session.get(
            "{}/file/{}/{}".format(
                self._local.download_url,
                self.bucket_name,
                urllib.parse.quote(name, encoding="utf-8"),
            ),
            timeout=TIMEOUT,
            headers={
                'Authorization': self._local.authorization_token,
            },
            stream=True,
        )

        logger.debug("b2_download_file_by_name {} {:.2f}s".format(
            response.status_code,
            response.elapsed.total_seconds(),
        ))

        f = tempfile.NamedTemporaryFile(suffix=".b2tmp")
        digest = hashlib.sha1()
        try:
            with response:
                if response.status_code != 200:
                    try:
                        resp_json = response.json()
                    except ValueError:
                        response.raise_for_status()
                        raise IOError("Non-200 status code returned for "
                                      "download request")
                    raise B2ResponseError(resp_json)

                for chunk in response.iter_content(chunk_size=io.DEFAULT_BUFFER_SIZE):
                    digest.update(chunk)
                    f.write(chunk)

            if not hmac.compare_digest(
                    digest.hexdigest(),
                    response.headers['X-Bz-Content-Sha1'],
            ):
                raise IOError("Corrupt download: Sha1 doesn't match")
        except BaseException:
            f.close()
            raise

        f.flush()
        f.seek(0)
        return f

    def _get_file_info(self, name):
        """Returns the metadata dict for the named file, or None

        This costs one class C transaction
        """
        data = self._call_api(
            "b2_list_file_names",
            {
                'bucketId': self.bucket_id,
                'maxFileCount': 1,
                'prefix': name,
                'startFileName': name,
            }
        )
        for info in data['files']:
            if info['fileName'] == name:
                return info
        return None

    def size(self, name):
        info = self._get_file_info(name)
        if info is None:
            raise FileNotFoundError("No such file {!r}".format(name))
        return int(info['contentLength'])

    def exists(self, name):
        return self._get_file_info(name) is not None

    def delete(self, name):
        """Hides the given file with b2_hide_file

        Set the bucket lifecycle policy to delete hidden files to recover the
        space. Errors for the file not existing or already being hidden are
        ignored.

        This costs one class A transaction
        """
        try:
            self._call_api(
                "b2_hide_file",
                {
                    'bucketId': self.bucket_id,
                    'fileName': name,
                }
            )
        except B2ResponseError as e:
            if e.data.get('code') not in ('no_such_file', 'already_hidden'):
                raise
