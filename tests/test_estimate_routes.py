import io
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from upkeep import create_app, db
from upkeep.errors import ValidationError
from upkeep.estimates import store
from upkeep.models import ProjectEstimate, WorkOrder

USER = {'X-User-Id': 'u1'}


def setup_app(**config):
    app = create_app('testing')
    app.config.update(config)
    with app.app_context():
        db.drop_all()
        db.create_all()
    return app


def create(http, **extra):
    body = {
        'title': 'Deck repair',
        'description': 'Replace rotten boards',
        'building': 21,
        'apartmentNumber': '1C',
        'priority': 'high',
        'visitDate': '2026-03-01T10:00:00Z',
        'lineItems': [
            {'productService': 'Boards', 'qty': 10, 'rate': 20, 'tax': 0,
             'estimatedCost': 100, 'class': 'materials'},
            {'productService': 'Labour', 'amount': 50, 'tax': 10, 'taxType': 'percentage',
             'estimatedCost': 40, 'notes': 'two hours'},
        ],
    }
    body.update(extra)
    resp = http.post('/estimates/', json=body, headers=USER)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['data']['projectEstimate']


def test_create_and_view():
    app = setup_app()
    with app.app_context():
        http = app.test_client()
        data = create(http)
        assert data['status'] == 'draft'
        assert data['createdBy'] == 'u1'
        assert data['estimatedPrice'] == 255.0
        assert data['estimatedCost'] == 140.0
        assert data['estimatedProfit'] == 115.0
        assert data['estimatedProfitMargin'] == 45.1
        assert data['visitDate'] == '2026-03-01T10:00:00'
        assert [li['amount'] for li in data['lineItems']] == [200.0, 50.0]

        resp = http.get(f"/estimates/{data['id']}")
        assert resp.status_code == 200
        assert resp.get_json()['data']['projectEstimate']['building'] == 21


def test_create_validation():
    app = setup_app()
    with app.app_context():
        http = app.test_client()
        resp = http.post('/estimates/', json={'title': 'x', 'description': 'y', 'building': 1})
        assert resp.status_code == 400
        assert 'createdBy' in resp.get_json()['error']

        resp = http.post('/estimates/', json={'title': 'x', 'building': 1}, headers=USER)
        assert resp.status_code == 400

        resp = http.post('/estimates/', json={'title': 'x', 'description': 'y', 'building': 1,
                                              'lineItems': [{'qty': 0, 'rate': 5}]},
                         headers=USER)
        assert resp.status_code == 400
        assert ProjectEstimate.query.count() == 0


def test_missing_estimate_is_404():
    app = setup_app()
    with app.app_context():
        resp = app.test_client().get('/estimates/404')
        assert resp.status_code == 404
        assert resp.get_json()['error'] == 'Project estimate not found'


def test_patch_rejects_read_only_fields():
    app = setup_app()
    with app.app_context():
        http = app.test_client()
        data = create(http)
        resp = http.patch(f"/estimates/{data['id']}", json={'status': 'approved'})
        assert resp.status_code == 400
        resp = http.patch(f"/estimates/{data['id']}", json={'title': 'Deck rebuild',
                                                            'estimatedDuration': 3})
        assert resp.status_code == 200
        body = resp.get_json()['data']['projectEstimate']
        assert body['title'] == 'Deck rebuild'
        assert body['status'] == 'draft'


def test_line_item_routes_recompute_totals():
    app = setup_app()
    with app.app_context():
        http = app.test_client()
        data = create(http)
        url = f"/estimates/{data['id']}/line-items"

        resp = http.post(url, json={'productService': 'Stain', 'qty': 2, 'rate': 22.5})
        assert resp.status_code == 201
        body = resp.get_json()['data']
        assert body['lineItem']['amount'] == 45.0
        assert body['projectEstimate']['estimatedPrice'] == 300.0

        item_id = body['lineItem']['id']
        resp = http.put(f'{url}/{item_id}', json={'qty': 4})
        assert resp.get_json()['data']['lineItem']['amount'] == 90.0
        assert resp.get_json()['data']['projectEstimate']['estimatedPrice'] == 345.0

        first_id = data['lineItems'][0]['id']
        resp = http.delete(f'{url}/{first_id}')
        assert resp.status_code == 200
        body = resp.get_json()['data']['projectEstimate']
        assert body['estimatedPrice'] == 145.0
        assert len(body['lineItems']) == 2

        resp = http.patch(f"/estimates/{data['id']}/calculate-totals")
        assert resp.get_json()['data']['totals']['estimatedPrice'] == 145.0


def test_full_flow_over_http():
    app = setup_app()
    with app.app_context():
        http = app.test_client()
        est_id = create(http)['id']

        resp = http.post(f'/estimates/{est_id}/send-to-client', json={}, headers=USER)
        assert resp.status_code == 400
        resp = http.post(f'/estimates/{est_id}/send-to-client',
                         json={'clientEmail': 'owner@example.com'}, headers=USER)
        assert resp.get_json()['data']['projectEstimate']['status'] == 'submitted'

        resp = http.patch(f'/estimates/{est_id}/approve', json={'approved': True},
                          headers={'X-User-Id': 'manager-1'})
        assert resp.status_code == 400

        http.patch(f'/estimates/{est_id}/mark-pending', headers=USER)
        pending = http.get('/estimates/pending-approvals').get_json()
        assert [e['id'] for e in pending['data']['projectEstimates']] == [est_id]

        resp = http.patch(f'/estimates/{est_id}/approve', json={'approved': True},
                          headers={'X-User-Id': 'manager-1'})
        assert resp.get_json()['data']['projectEstimate']['approvedBy'] == 'manager-1'

        resp = http.post(f'/estimates/{est_id}/convert', headers=USER)
        assert resp.status_code == 201
        wo_id = resp.get_json()['data']['workOrder']['id']
        assert resp.get_json()['data']['workOrder']['price'] == 255.0

        resp = http.post(f'/estimates/{est_id}/convert', headers=USER)
        assert resp.status_code == 400
        assert WorkOrder.query.count() == 1

        resp = http.get(f'/work-orders/{wo_id}')
        assert resp.get_json()['data']['workOrder']['projectEstimate'] == est_id

        resp = http.patch(f'/estimates/{est_id}', json={'title': 'Changed'})
        assert resp.status_code == 400
        resp = http.delete(f'/estimates/{est_id}')
        assert resp.status_code == 400
        assert db.session.get(ProjectEstimate, est_id) is not None


def test_invoice_over_http():
    app = setup_app()
    with app.app_context():
        http = app.test_client()
        est_id = create(http)['id']
        http.patch(f'/estimates/{est_id}/mark-pending', headers=USER)
        http.patch(f'/estimates/{est_id}/approve', json={'approved': True}, headers=USER)

        resp = http.post(f'/estimates/{est_id}/convert-to-invoice', headers=USER)
        assert resp.status_code == 201
        invoice = resp.get_json()['data']['invoice']
        assert invoice['total'] == 255.0
        assert resp.get_json()['data']['projectEstimate']['invoiceId'] == invoice['id']

        resp = http.get(f"/invoices/by-number/{invoice['invoiceNumber']}")
        assert resp.get_json()['data']['invoice']['id'] == invoice['id']
        assert http.get('/invoices/999').status_code == 404


def test_reject_route():
    app = setup_app()
    with app.app_context():
        http = app.test_client()
        est_id = create(http)['id']
        http.patch(f'/estimates/{est_id}/mark-pending', headers=USER)
        resp = http.patch(f'/estimates/{est_id}/reject', json={}, headers=USER)
        assert resp.status_code == 400
        resp = http.patch(f'/estimates/{est_id}/reject', json={'reason': 'Over budget'},
                          headers=USER)
        body = resp.get_json()['data']['projectEstimate']
        assert body['status'] == 'rejected'
        assert body['rejectionReason'] == 'Over budget'


def test_list_filters_and_pages():
    app = setup_app()
    with app.app_context():
        http = app.test_client()
        for building in (1, 1, 2):
            create(http, building=building)

        page = http.get('/estimates/?limit=2').get_json()
        assert page['results'] == 2
        assert page['total'] == 3
        assert page['totalPages'] == 2

        page = http.get('/estimates/?building=1').get_json()
        assert page['total'] == 2
        assert http.get('/estimates/?status=bogus').status_code == 400

        stats = http.get('/estimates/stats').get_json()['data']['stats']
        assert stats['totalProjects'] == 3
        assert stats['byStatus']['draft']['count'] == 3
        assert stats['totalEstimatedValue'] == 765.0


def test_photo_upload_and_delete(tmp_path):
    app = setup_app(UPLOAD_FOLDER=str(tmp_path))
    with app.app_context():
        http = app.test_client()
        resp = http.post('/estimates/', headers=USER, data={
            'title': 'Leak',
            'description': 'Ceiling stain',
            'building': '4',
            'photoType': 'damage',
            'photos': (io.BytesIO(b'fake image bytes'), 'ceiling.jpg', 'image/jpeg'),
        })
        assert resp.status_code == 201
        est = resp.get_json()['data']['projectEstimate']
        photo = est['photos'][0]
        assert photo['type'] == 'damage'
        path = tmp_path / photo['url'][len('/uploads/'):]
        assert path.exists()

        resp = http.post('/estimates/', headers=USER, data={
            'title': 'Leak', 'description': 'Ceiling stain', 'building': '4',
            'photos': (io.BytesIO(b'%PDF'), 'notes.pdf', 'application/pdf'),
        })
        assert resp.status_code == 400

        resp = http.delete(f"/estimates/{est['id']}")
        assert resp.status_code == 204
        assert not path.exists()
        assert db.session.get(ProjectEstimate, est['id']) is None


def test_pdf_and_mark_viewed():
    app = setup_app()
    with app.app_context():
        http = app.test_client()
        est_id = create(http, clientNotes='Work <starts> Monday & ends Friday')['id']

        resp = http.get(f'/estimates/{est_id}/pdf')
        assert resp.status_code == 200
        assert resp.mimetype == 'application/pdf'
        assert resp.data.startswith(b'%PDF')

        resp = http.patch(f'/estimates/{est_id}/mark-viewed')
        assert resp.get_json()['data']['projectEstimate']['clientViewed'] is True


def test_failed_line_item_update_leaves_item_unchanged():
    app = setup_app()
    with app.app_context():
        est = store.create_estimate({
            'title': 'Paint', 'description': 'Hallway', 'building': 9,
            'lineItems': [{'productService': 'Paint', 'amount': 100, 'tax': 0}],
        }, created_by='u1')
        item = est.line_items[0]
        with pytest.raises(ValidationError):
            store.update_line_item(est, item.id, {'amount': 999, 'productService': 'Gold',
                                                  'serviceDate': 'not-a-date'})
        db.session.commit()
        db.session.refresh(est)
        assert est.line_items[0].amount == 100.0
        assert est.line_items[0].product_service == 'Paint'
        assert est.estimated_price == 100.0


def test_dropped_photos_are_removed_from_disk(tmp_path):
    app = setup_app(UPLOAD_FOLDER=str(tmp_path))
    with app.app_context():
        http = app.test_client()
        resp = http.post('/estimates/', headers=USER, data={
            'title': 'Leak',
            'description': 'Ceiling stain',
            'building': '4',
            'photos': [(io.BytesIO(b'one'), 'a.jpg', 'image/jpeg'),
                       (io.BytesIO(b'two'), 'b.jpg', 'image/jpeg')],
        })
        assert resp.status_code == 201
        est = resp.get_json()['data']['projectEstimate']
        first, second = est['photos']
        first_path = tmp_path / first['url'][len('/uploads/'):]
        second_path = tmp_path / second['url'][len('/uploads/'):]

        resp = http.patch(f"/estimates/{est['id']}", json={'photos': [second]})
        assert resp.status_code == 200
        assert [p['url'] for p in resp.get_json()['data']['projectEstimate']['photos']] == \
            [second['url']]
        assert not first_path.exists()
        assert second_path.exists()

        http.delete(f"/estimates/{est['id']}")
        assert list((tmp_path / 'project-estimates').iterdir()) == []


def test_approve_requires_boolean():
    app = setup_app()
    with app.app_context():
        http = app.test_client()
        est_id = create(http)['id']
        http.patch(f'/estimates/{est_id}/mark-pending', headers=USER)
        resp = http.patch(f'/estimates/{est_id}/approve', json={'approved': 'false'},
                          headers=USER)
        assert resp.status_code == 400
        assert db.session.get(ProjectEstimate, est_id).status == 'pending'

        resp = http.patch(f'/estimates/{est_id}/approve',
                          json={'approved': False, 'rejectionReason': 'Too high'},
                          headers=USER)
        assert resp.status_code == 200
        assert resp.get_json()['data']['projectEstimate']['status'] == 'rejected'
