from django.core.management.base import BaseCommand, CommandError
from accounts.models import User
from accounts.session import ParentSession
from students.matching import LinkingValidationError


class Command(BaseCommand):
    help = (
        "Diagnose student matching for a parent. "
        "Shows the candidates automatic or manual matching would offer."
    )

    def add_arguments(self, parser):
        parser.add_argument("--user-id", type=int, help="User id")
        parser.add_argument("--email", type=str, help="User email")
        parser.add_argument("--child-name", type=str, help="Manual search: child name")
        parser.add_argument("--school-id", type=str, help="Manual search: school id")
        parser.add_argument(
            "--linked",
            action="store_true",
            help="List students already linked to the parent",
        )
        parser.add_argument(
            "--apply",
            action="store_true",
            help="Link --student-id to the parent",
        )
        parser.add_argument("--student-id", type=str, help="Student to link with --apply")

    def handle(self, *args, **opts):
        user = None
        if opts.get("user_id"):
            user = User.objects.filter(id=opts["user_id"]).first()
        elif opts.get("email"):
            user = User.objects.filter(email__iexact=opts["email"]).first()
        if not user:
            raise CommandError("User not found. Use --user-id or --email.")

        session = ParentSession.resume(user)
        if session is None:
            raise CommandError(
                f"User {user.email} has no stored backend session; sign in first."
            )
        matcher = session.matcher()
        self.stdout.write(
            f"User: id={user.id} email={user.email} parent_id={session.parent_id}"
        )

        if opts.get("apply"):
            sid = opts.get("student_id")
            if not sid:
                raise CommandError("--apply requires --student-id")
            try:
                ok = matcher.link(session.parent_id, sid)
            except LinkingValidationError as e:
                raise CommandError(str(e))
            if ok:
                self.stdout.write(self.style.SUCCESS(f"Linked student {sid}."))
            else:
                self.stdout.write(self.style.ERROR(f"Linking student {sid} failed."))
            return

        try:
            if opts.get("linked"):
                label = "Linked students"
                candidates = matcher.list_linked(session.parent_id)
            elif opts.get("child_name") or opts.get("school_id"):
                label = f"Manual matches for {opts.get('child_name')!r}"
                candidates = matcher.search_manual(
                    opts.get("child_name") or "", opts.get("school_id") or ""
                )
            else:
                label = f"Automatic matches for {session.parent_full_name!r}"
                candidates = matcher.search_automatic(
                    session.parent_full_name, user.email, user.phone or None
                )
        except LinkingValidationError as e:
            raise CommandError(str(e))

        if matcher.last_error is not None:
            self.stderr.write(f"Search failed: {matcher.last_error}")
        self.stdout.write(f"\n{label}: {len(candidates)} candidate(s)")
        for c in candidates:
            r = c.record
            self.stdout.write(
                "  - id=%s code=%s name=%s school=%s confidence=%s reasons=%s"
                % (
                    r.id,
                    r.student_id,
                    r.full_name,
                    r.school_name,
                    c.confidence.value,
                    "; ".join(c.reasons) or "-",
                )
            )
