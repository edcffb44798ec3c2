import hashlib
import io
import os.path
import unittest.mock

from readthrough.b2 import B2Bucket, B2ResponseError
from readthrough.file import CachedFile

from .base import TestBase


def make_response(status_code=200, data=None, headers=None, content=None):
    response = unittest.mock.MagicMock()
    response.status_code = status_code
    if data is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = data
    response.headers = headers or {}
    response.elapsed.total_seconds.return_value = 0.1
    response.iter_content.return_value = [content] if content else []
    return response


def auth_response(token="token"):
    return make_response(200, {
        'authorizationToken': token,
        'apiUrl': "https://api.example.com",
        'downloadUrl': "https://download.example.com",
    })


def download_response(content):
    return make_response(
        200,
        headers={'X-Bz-Content-Sha1': hashlib.sha1(content).hexdigest()},
        content=content,
    )


def list_response(*names):
    return make_response(200, {
        'files': [
            {'fileName': name, 'contentLength': 5} for name in names
        ],
        'nextFileName': None,
    })


class TestB2Bucket(TestBase):
    def setUp(self):
        super().setUp()
        self.bucket = B2Bucket("account", "appkey", "bucket")
        self.session = unittest.mock.MagicMock()
        self.bucket._local.session = self.session
        self.bucket.__dict__['bucket_id'] = "bucket-id"

        patcher = unittest.mock.patch("readthrough.b2.time.sleep")
        self.sleep = patcher.start()
        self.addCleanup(patcher.stop)

    def posted_json(self, index):
        return self.session.post.call_args_list[index][1]['json']

    def test_open(self):
        self.session.post.return_value = auth_response()
        self.session.get.return_value = download_response(b"hello")

        f = self.bucket.open("dir/abc")
        self.addCleanup(f.close)

        self.assertEqual(b"hello", f.read())
        self.assertTrue(os.path.isfile(f.name))
        self.assertEqual(
            "https://download.example.com/file/bucket/dir/abc",
            self.session.get.call_args[0][0],
        )
        self.assertEqual(
            "token",
            self.session.get.call_args[1]['headers']['Authorization'],
        )

    def test_open_through_cache(self):
        self.session.post.return_value = auth_response()
        self.session.get.return_value = download_response(b"hello")

        with CachedFile(self.bucket, "abc", self.config) as f:
            self.assertEqual(b"hello", f.read())
        self.assertEqual(b"hello", self.read_cached("abc"))

        with CachedFile(self.bucket, "abc", self.config) as f:
            self.assertEqual(b"hello", f.read())
            self.assertEqual(5, f.size())
        self.assertEqual(1, self.session.get.call_count)
        self.assertEqual(1, self.session.post.call_count)

    def test_open_corrupt(self):
        self.session.post.return_value = auth_response()
        response = download_response(b"hello")
        response.headers['X-Bz-Content-Sha1'] = hashlib.sha1(b"other").hexdigest()
        self.session.get.return_value = response

        with self.assertRaises(IOError):
            self.bucket.open("abc")

    def test_open_missing(self):
        self.session.post.return_value = auth_response()
        self.session.get.return_value = make_response(404, {
            'code': "not_found",
            'message': "File not present",
            'status': 404,
        })

        with self.assertRaises(B2ResponseError) as cm:
            CachedFile(self.bucket, "abc", self.config).read()
        self.assertEqual("not_found", cm.exception.data['code'])
        self.assertEqual([], os.listdir(self.cachedir))

    def test_size_and_exists(self):
        self.session.post.side_effect = [
            auth_response(),
            list_response("abc"),
            list_response("abc"),
            list_response("abcd"),
            list_response(),
        ]

        self.assertEqual(5, self.bucket.size("abc"))
        self.assertTrue(self.bucket.exists("abc"))
        self.assertFalse(self.bucket.exists("abc"))
        self.assertFalse(self.bucket.exists("zzz"))

        self.assertEqual(
            {
                'bucketId': "bucket-id",
                'maxFileCount': 1,
                'prefix': "abc",
                'startFileName': "abc",
            },
            self.posted_json(1),
        )
        self.assertEqual(
            "https://api.example.com/b2api/v1/b2_list_file_names",
            self.session.post.call_args_list[1][0][0],
        )

    def test_size_missing(self):
        self.session.post.side_effect = [auth_response(), list_response()]
        with self.assertRaises(FileNotFoundError):
            self.bucket.size("abc")

    def test_bucket_id(self):
        del self.bucket.__dict__['bucket_id']
        self.session.post.side_effect = [
            auth_response(),
            make_response(200, {'buckets': [
                {'bucketName': "other", 'bucketId': "other-id"},
                {'bucketName': "bucket", 'bucketId': "the-id"},
            ]}),
        ]
        self.assertEqual("the-id", self.bucket.bucket_id)
        self.assertEqual({'accountId': "account"}, self.posted_json(1))

    def test_delete(self):
        self.session.post.side_effect = [
            auth_response(),
            make_response(200, {}),
        ]
        self.bucket.delete("abc")
        self.assertEqual(
            {'bucketId': "bucket-id", 'fileName': "abc"},
            self.posted_json(1),
        )

    def test_delete_ignores_missing(self):
        self.session.post.side_effect = [
            auth_response(),
            make_response(400, {'code': "no_such_file", 'message': "gone"}),
        ]
        self.bucket.delete("abc")

    def test_delete_error(self):
        self.session.post.side_effect = [
            auth_response(),
            make_response(400, {'code': "bad_request", 'message': "nope"}),
        ]
        with self.assertRaises(B2ResponseError):
            self.bucket.delete("abc")

    def test_authorize_failure(self):
        self.session.post.return_value = make_response(
            401, {'code': "unauthorized", 'message': "bad key"})
        with self.assertRaises(IOError):
            self.bucket.exists("abc")

    def test_retry_service_unavailable(self):
        self.session.post.side_effect = [
            make_response(503, {}),
            make_response(503, {}),
            auth_response(),
            list_response("abc"),
        ]
        self.assertTrue(self.bucket.exists("abc"))
        self.assertEqual(
            [unittest.mock.call(1), unittest.mock.call(2)],
            self.sleep.call_args_list,
        )

    def test_retry_too_many_requests(self):
        self.session.post.side_effect = [
            auth_response(),
            make_response(429, {}, headers={'Retry-After': "7"}),
            list_response("abc"),
        ]
        self.assertTrue(self.bucket.exists("abc"))
        self.sleep.assert_called_once_with(7)

    def test_expired_token(self):
        self.session.post.side_effect = [
            auth_response("old"),
            make_response(401, {'code': "expired_auth_token",
                                'message': "expired"}),
            auth_response("new"),
            list_response("abc"),
        ]
        self.assertTrue(self.bucket.exists("abc"))
        # The retried call sends the same parameters with the new token
        self.assertEqual(self.posted_json(1), self.posted_json(3))
        self.assertEqual(
            "new",
            self.session.post.call_args_list[3][1]['headers']['Authorization'],
        )

    def test_upload(self):
        upload = make_response(200, {'fileId': "file-id", 'fileName': "a b"})
        self.session.post.side_effect = [
            auth_response(),
            make_response(200, {'uploadUrl': "https://upload.example.com",
                                'authorizationToken': "upload-token"}),
            upload,
        ]

        result = self.bucket.upload_file("a b", io.BytesIO(b"hello"))

        self.assertEqual("file-id", result['fileId'])
        url = self.session.post.call_args_list[2][0][0]
        headers = self.session.post.call_args_list[2][1]['headers']
        self.assertEqual("https://upload.example.com", url)
        self.assertEqual("a%20b", headers['X-Bz-File-Name'])
        self.assertEqual("5", headers['Content-Length'])
        self.assertEqual("upload-token", headers['Authorization'])
        self.assertEqual(hashlib.sha1(b"hello").hexdigest(),
                         headers['X-Bz-Content-Sha1'])

    def test_upload_retries_with_new_url(self):
        self.session.post.side_effect = [
            auth_response(),
            make_response(200, {'uploadUrl': "https://upload1.example.com",
                                'authorizationToken': "upload-token"}),
            make_response(500, {'message': "boom"}),
            make_response(200, {'uploadUrl': "https://upload2.example.com",
                                'authorizationToken': "upload-token"}),
            make_response(200, {'fileId': "file-id"}),
        ]

        result = self.bucket.upload_file("abc", io.BytesIO(b"hello"))

        self.assertEqual("file-id", result['fileId'])
        self.assertEqual("https://upload2.example.com",
                         self.session.post.call_args_list[4][0][0])

    def test_params(self):
        self.assertEqual(
            {'account_id': "account", 'application_key': "appkey",
             'bucket_name': "bucket"},
            self.bucket.get_params(),
        )
