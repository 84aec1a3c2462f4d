from flask import Blueprint, g, jsonify, request
from marshmallow import Schema, fields, validate

from outreach.exceptions import NotFoundError
from outreach.extensions import db
from outreach.models import Contact, ContactGroup
from outreach.models.contact_group import contact_group_members
from outreach.utils.auth import login_required
from outreach.utils.validators import paginate_query, validate_query_args, validate_request_json

contact_groups_bp = Blueprint('contact_groups', __name__)


class ContactGroupSchema(Schema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=100))
    description = fields.Str(allow_none=True, validate=validate.Length(max=500))
    contact_ids = fields.List(fields.Str())


class GroupMembersSchema(Schema):
    contact_ids = fields.List(fields.Str(), required=True, validate=validate.Length(min=1))


class PageQuerySchema(Schema):
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    limit = fields.Int(load_default=20, validate=validate.Range(min=1, max=100))


def _owned_group(group_id):
    group = ContactGroup.query.filter_by(id=group_id, user_id=g.current_user.id).first()
    if group is None:
        raise NotFoundError('Contact group not found')
    return group


def _owned_contacts(contact_ids):
    """The caller's contacts among contact_ids; foreign and unknown ids are skipped"""
    if not contact_ids:
        return []
    return Contact.query.filter(
        Contact.user_id == g.current_user.id, Contact.id.in_(contact_ids)
    ).all()


@contact_groups_bp.route('', methods=['GET'])
@login_required('read')
@validate_query_args(PageQuerySchema())
def list_groups():
    args = request.validated_args
    query = ContactGroup.query.filter_by(user_id=g.current_user.id).order_by(ContactGroup.name)
    groups, pagination = paginate_query(query, args['page'], args['limit'])
    return jsonify({
        'success': True,
        'groups': [group.to_dict() for group in groups],
        'pagination': pagination
    }), 200


@contact_groups_bp.route('', methods=['POST'])
@login_required('write')
@validate_request_json(ContactGroupSchema())
def create_group():
    data = request.validated_data
    group = ContactGroup(user_id=g.current_user.id, name=data['name'].strip(),
                         description=data.get('description'))
    group.add_contacts(_owned_contacts(data.get('contact_ids')))
    group.save()
    return jsonify({'success': True, 'group': group.to_dict()}), 201


@contact_groups_bp.route('/<group_id>', methods=['GET'])
@login_required('read')
def get_group(group_id):
    return jsonify({'success': True, 'group': _owned_group(group_id).to_dict()}), 200


@contact_groups_bp.route('/<group_id>', methods=['PUT'])
@login_required('write')
@validate_request_json(ContactGroupSchema(partial=True))
def update_group(group_id):
    """Rename or describe the group; contact_ids replaces its membership"""
    group = _owned_group(group_id)
    data = request.validated_data

    if 'name' in data:
        group.name = data['name'].strip()
    if 'description' in data:
        group.description = data['description']
    if 'contact_ids' in data:
        group.contacts = []
        group.add_contacts(_owned_contacts(data['contact_ids']))
    group.save()
    return jsonify({'success': True, 'group': group.to_dict()}), 200


@contact_groups_bp.route('/<group_id>', methods=['DELETE'])
@login_required('write')
def delete_group(group_id):
    group = _owned_group(group_id)
    db.session.delete(group)
    db.session.commit()
    return jsonify({'success': True, 'message': 'Contact group deleted successfully'}), 200


@contact_groups_bp.route('/<group_id>/contacts', methods=['GET'])
@login_required('read')
@validate_query_args(PageQuerySchema())
def list_group_contacts(group_id):
    group = _owned_group(group_id)
    args = request.validated_args
    query = Contact.query.join(
        contact_group_members, contact_group_members.c.contact_id == Contact.id
    ).filter(contact_group_members.c.group_id == group.id).order_by(Contact.created_at)

    contacts, pagination = paginate_query(query, args['page'], args['limit'])
    return jsonify({
        'success': True,
        'group': {'id': group.id, 'name': group.name},
        'contacts': [contact.to_dict() for contact in contacts],
        'pagination': pagination
    }), 200


@contact_groups_bp.route('/<group_id>/contacts', methods=['POST'])
@login_required('write')
@validate_request_json(GroupMembersSchema())
def add_group_contacts(group_id):
    group = _owned_group(group_id)
    added = group.add_contacts(_owned_contacts(request.validated_data['contact_ids']))
    db.session.commit()
    return jsonify({
        'success': True,
        'added_count': added,
        'total_contacts': group.contact_count
    }), 200


@contact_groups_bp.route('/<group_id>/contacts/<contact_id>', methods=['DELETE'])
@login_required('write')
def remove_group_contact(group_id, contact_id):
    group = _owned_group(group_id)
    if not group.remove_contact(contact_id):
        raise NotFoundError('Contact is not in this group')
    db.session.commit()
    return jsonify({'success': True, 'total_contacts': group.contact_count}), 200
