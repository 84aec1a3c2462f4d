from flask import Blueprint, g, jsonify, request
from marshmallow import Schema, fields, validate

from outreach.api.schemas import custom_fields_field
from outreach.exceptions import NotFoundError
from outreach.extensions import db
from outreach.models import Contact
from outreach.models.contact import CONTACT_STATUSES
from outreach.utils.auth import login_required
from outreach.utils.validators import (
    paginate_query, phone_validator, validate_query_args, validate_request_json
)

contacts_bp = Blueprint('contacts', __name__)


class ContactSchema(Schema):
    email = fields.Email(required=True)
    first_name = fields.Str(validate=validate.Length(max=100))
    last_name = fields.Str(validate=validate.Length(max=100))
    phone = fields.Str(allow_none=True, validate=phone_validator)
    status = fields.Str(validate=validate.OneOf(CONTACT_STATUSES))
    tags = fields.List(fields.Str(validate=validate.Length(min=1, max=50)))
    custom_fields = custom_fields_field()


class ContactQuerySchema(Schema):
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    limit = fields.Int(load_default=20, validate=validate.Range(min=1, max=1000))
    status = fields.Str(load_default=None, validate=validate.OneOf(CONTACT_STATUSES))
    search = fields.Str(load_default=None, validate=validate.Length(min=1, max=100))


def _owned_contact(contact_id):
    contact = Contact.query.filter_by(id=contact_id, user_id=g.current_user.id).first()
    if contact is None:
        raise NotFoundError('Contact not found')
    return contact


@contacts_bp.route('', methods=['GET'])
@login_required('read')
@validate_query_args(ContactQuerySchema())
def list_contacts():
    args = request.validated_args
    query = Contact.search(g.current_user.id, status=args['status'], search=args['search'])
    contacts, pagination = paginate_query(query, args['page'], args['limit'])
    return jsonify({
        'success': True,
        'contacts': [contact.to_dict() for contact in contacts],
        'pagination': pagination
    }), 200


@contacts_bp.route('', methods=['POST'])
@login_required('write')
@validate_request_json(ContactSchema())
def create_contact():
    data = request.validated_data
    data['email'] = data['email'].lower()
    contact = Contact(user_id=g.current_user.id, **data).save()
    return jsonify({'success': True, 'contact': contact.to_dict()}), 201


@contacts_bp.route('/<contact_id>', methods=['GET'])
@login_required('read')
def get_contact(contact_id):
    return jsonify({'success': True, 'contact': _owned_contact(contact_id).to_dict()}), 200


@contacts_bp.route('/<contact_id>', methods=['PUT'])
@login_required('write')
@validate_request_json(ContactSchema(partial=True))
def update_contact(contact_id):
    contact = _owned_contact(contact_id)
    data = request.validated_data
    if 'email' in data:
        data['email'] = data['email'].lower()

    for field, value in data.items():
        setattr(contact, field, value)
    contact.save()
    return jsonify({'success': True, 'contact': contact.to_dict()}), 200


@contacts_bp.route('/<contact_id>', methods=['DELETE'])
@login_required('write')
def delete_contact(contact_id):
    contact = _owned_contact(contact_id)
    db.session.delete(contact)
    db.session.commit()
    return jsonify({'success': True, 'message': 'Contact deleted successfully'}), 200
