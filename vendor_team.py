import json
import logging

from flask import Blueprint, jsonify, request

from utils import (
    get_db_connection, db_unavailable, vendor_token_required, hash_password, generate_temp_password,
    new_id, serialize_row, write_audit, load_json
)

logger = logging.getLogger(__name__)
vendor_team_bp = Blueprint('vendor_team', __name__)

TEAM_ROLES = ('loader', 'support', 'manager', 'owner')
TEAM_STATUSES = ('active', 'inactive', 'suspended')
PERMISSIONS = (
    'canAddStock', 'canViewOrders', 'canFulfillOrders', 'canManageProducts', 'canManageTeam', 'canViewReports'
)
ROLE_PERMISSIONS = {
    'loader': {'canAddStock'},
    'support': {'canViewOrders', 'canFulfillOrders'},
    'manager': set(PERMISSIONS),
    'owner': set(PERMISSIONS),
}


def default_permissions(role):
    granted = ROLE_PERMISSIONS.get(role, set())
    return {name: name in granted for name in PERMISSIONS}


def merge_permissions(current, overrides):
    """Apply known boolean flags from ``overrides``; unknown keys are ignored."""
    merged = dict(current)
    for name, value in (overrides or {}).items():
        if name in PERMISSIONS:
            merged[name] = bool(value)
    return merged


def serialize_member(row):
    return serialize_row(row, json_fields=('permissions',), exclude=('password_hash',))


@vendor_team_bp.route('/team', methods=['GET'])
@vendor_token_required
def get_team(current_vendor):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(
                'SELECT * FROM vendor_team WHERE vendor_id = %s ORDER BY created_at DESC',
                (current_vendor['id'],)
            )
            members = [serialize_member(m) for m in cursor.fetchall()]
            return jsonify({'success': True, 'message': 'Team members fetched', 'data': {'members': members}}), 200
        finally:
            cursor.close()
            conn.close()

    except Exception as e:
        logger.error(f"Error in get_team: {e}")
        return jsonify({'success': False, 'message': 'Failed to fetch team members'}), 500


@vendor_team_bp.route('/team', methods=['POST'])
@vendor_token_required
def add_team_member(current_vendor):
    """
    Adds a team member with a generated password, returned once in the response.
    Permissions start from the role defaults; explicit flags in the body override them.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = (data.get('email') or '').strip().lower()
        display_name = (data.get('displayName') or '').strip()
        role = data.get('role') or 'loader'
        if not email or not display_name:
            return jsonify({'success': False, 'message': 'email and displayName are required'}), 400
        if '@' not in email:
            return jsonify({'success': False, 'message': 'Invalid email address'}), 400
        if role not in TEAM_ROLES:
            return jsonify({'success': False, 'message': 'Invalid role'}), 400
        if data.get('permissions') is not None and not isinstance(data['permissions'], dict):
            return jsonify({'success': False, 'message': 'permissions must be an object'}), 400

        permissions = merge_permissions(default_permissions(role), data.get('permissions'))
        temp_password = generate_temp_password()
        member_id = new_id()

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute('SELECT id FROM vendor_team WHERE email = %s', (email,))
            if cursor.fetchone():
                return jsonify({'success': False, 'message': 'A team member with this email already exists'}), 409

            cursor.execute('''
                INSERT INTO vendor_team
                (id, vendor_id, email, display_name, role, permissions, status, password_hash, invited_by)
                VALUES (%s, %s, %s, %s, %s, %s, 'active', %s, %s)
            ''', (
                member_id, current_vendor['id'], email, display_name, role, json.dumps(permissions),
                hash_password(temp_password), current_vendor['primary_email']
            ))
            write_audit(cursor, 'vendor_audit', vendor_id=current_vendor['id'], action='team_member_added',
                        actor_id=current_vendor['primary_email'],
                        details={'memberId': member_id, 'email': email, 'role': role})
            cursor.execute('SELECT * FROM vendor_team WHERE id = %s', (member_id,))
            member = cursor.fetchone()
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error adding team member: {e}")
            return jsonify({'success': False, 'message': 'Failed to add team member'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({
            'success': True,
            'message': 'Team member added',
            'data': {'member': serialize_member(member), 'temporaryPassword': temp_password}
        }), 201

    except Exception as e:
        logger.error(f"Error in add_team_member: {e}")
        return jsonify({'success': False, 'message': 'Failed to add team member'}), 500


@vendor_team_bp.route('/team/<member_id>', methods=['PUT'])
@vendor_token_required
def update_team_member(current_vendor, member_id):
    try:
        data = request.get_json(silent=True) or {}
        role = data.get('role')
        status = data.get('status')
        if role is not None and role not in TEAM_ROLES:
            return jsonify({'success': False, 'message': 'Invalid role'}), 400
        if status is not None and status not in TEAM_STATUSES:
            return jsonify({'success': False, 'message': 'Invalid status'}), 400
        if data.get('permissions') is not None and not isinstance(data['permissions'], dict):
            return jsonify({'success': False, 'message': 'permissions must be an object'}), 400

        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(
                'SELECT * FROM vendor_team WHERE id = %s AND vendor_id = %s', (member_id, current_vendor['id'])
            )
            member = cursor.fetchone()
            if not member:
                return jsonify({'success': False, 'message': 'Team member not found'}), 404

            # A role change resets permissions to that role's defaults before overrides apply
            if role is not None and role != member['role']:
                permissions = default_permissions(role)
            else:
                permissions = load_json(member['permissions'], {})
            permissions = merge_permissions(permissions, data.get('permissions'))
            display_name = (data.get('displayName') or '').strip() or member['display_name']

            cursor.execute('''
                UPDATE vendor_team SET display_name = %s, role = %s, status = %s, permissions = %s
                WHERE id = %s AND vendor_id = %s
            ''', (
                display_name, role or member['role'], status or member['status'], json.dumps(permissions),
                member_id, current_vendor['id']
            ))
            write_audit(cursor, 'vendor_audit', vendor_id=current_vendor['id'], action='team_member_updated',
                        actor_id=current_vendor['primary_email'],
                        details={'memberId': member_id, 'role': role or member['role'],
                                 'status': status or member['status']})
            cursor.execute('SELECT * FROM vendor_team WHERE id = %s', (member_id,))
            member = cursor.fetchone()
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error updating team member: {e}")
            return jsonify({'success': False, 'message': 'Failed to update team member'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({'success': True, 'message': 'Team member updated',
                        'data': {'member': serialize_member(member)}}), 200

    except Exception as e:
        logger.error(f"Error in update_team_member: {e}")
        return jsonify({'success': False, 'message': 'Failed to update team member'}), 500


@vendor_team_bp.route('/team/<member_id>', methods=['DELETE'])
@vendor_token_required
def remove_team_member(current_vendor, member_id):
    try:
        conn = get_db_connection()
        if conn is None:
            return db_unavailable()
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(
                'DELETE FROM vendor_team WHERE id = %s AND vendor_id = %s', (member_id, current_vendor['id'])
            )
            if cursor.rowcount == 0:
                conn.rollback()
                return jsonify({'success': False, 'message': 'Team member not found'}), 404
            write_audit(cursor, 'vendor_audit', vendor_id=current_vendor['id'], action='team_member_removed',
                        actor_id=current_vendor['primary_email'], details={'memberId': member_id})
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Error removing team member: {e}")
            return jsonify({'success': False, 'message': 'Failed to remove team member'}), 500
        finally:
            cursor.close()
            conn.close()

        return jsonify({'success': True, 'message': 'Team member removed'}), 200

    except Exception as e:
        logger.error(f"Error in remove_team_member: {e}")
        return jsonify({'success': False, 'message': 'Failed to remove team member'}), 500
