import os
from remex.cas import *
import helpers_web as helpers

def test_root():
    store, client = helpers.setup_server()
    response = client.get("/")
    assert response.status_code == 200
    assert response.text == "remex cache"

def test_put_get_blob():
    store, client = helpers.setup_server()
    data = os.urandom(1024)
    digest = get_digest(data)

    response = client.get(helpers.cas_url(digest))
    assert response.status_code == 404
    response = client.head(helpers.cas_url(digest))
    assert response.status_code == 404

    response = client.put(helpers.cas_url(digest), content=data)
    assert response.status_code == 200
    # idempotent
    response = client.put(helpers.cas_url(digest), content=data)
    assert response.status_code == 200

    response = client.get(helpers.cas_url(digest))
    assert response.status_code == 200
    assert response.headers['content-type'] == 'application/octet-stream'
    assert response.content == data
    response = client.head(helpers.cas_url(digest))
    assert response.status_code == 200

def test_put_with_wrong_digest():
    store, client = helpers.setup_server()
    digest = get_digest(b"expected")
    response = client.put(helpers.cas_url(digest), content=b"something else")
    assert response.status_code == 409
    assert store.blob_count() == 0

def test_malformed_digest_and_namespace():
    store, client = helpers.setup_server()
    response = client.get("/cas/not-a-digest")
    assert response.status_code == 400
    response = client.get(f"/other/{get_digest(b'x').hex()}")
    assert response.status_code == 400

def test_put_get_action_result():
    store, client = helpers.setup_server()
    action_digest = get_digest(b"action")
    blob_digest = get_digest(b"out")
    result = ActionResult(0, blob_digest, blob_digest, {"out.txt": FileNode(blob_digest, False)})

    response = client.get(helpers.ac_url(action_digest))
    assert response.status_code == 404

    response = client.put(helpers.ac_url(action_digest), content=action_result_to_bytes(result))
    assert response.status_code == 200

    response = client.get(helpers.ac_url(action_digest))
    assert response.status_code == 200
    assert bytes_to_action_result(response.content) == result

def test_put_malformed_action_result():
    store, client = helpers.setup_server()
    response = client.put(helpers.ac_url(get_digest(b"action")), content=b"garbage")
    assert response.status_code == 400

def test_prefix():
    store, client = helpers.setup_server(helpers.PREFIX)
    data = b"behind a prefix"
    digest = get_digest(data)

    response = client.put(helpers.cas_url(digest, helpers.PREFIX), content=data)
    assert response.status_code == 200
    response = client.get(helpers.cas_url(digest, helpers.PREFIX))
    assert response.content == data
    # without the prefix, nothing is found
    response = client.get(helpers.cas_url(digest))
    assert response.status_code == 404

def test_get_corrupt_stored_blob():
    store, client = helpers.setup_server()
    digest = get_digest(b"original")
    store._blobs[bytes(digest)] = b"tampered"
    response = client.get(helpers.cas_url(digest))
    assert response.status_code == 409
