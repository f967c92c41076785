"""
Secondary page resolver.

Some code emails do not carry the code inline; they link to a verification
page that shows it. resolve_from_url() visits that page in a headless browser
and reads the code, logging in first when credentials are configured.

Protocol:
  1. Open a browsing session (released on every exit path).
  2. Without credentials, read the page as-is. A login wall simply yields
     NotFound; no login is attempted.
  3. With credentials, reuse the stored session if the landing page does not
     bounce to the login form; otherwise log in once and persist the session.
  4. Open the verification URL and read the code from the code target
     element, falling back to a scan of the whole page text only when that
     element is absent.

Every failure (navigation, login, timeout, selector) resolves to NotFound and
is logged. Nothing is raised to the caller.

The code target is a separate object because it is the only part coupled to
the remote page's markup; when the page changes, swap the CodeTarget.
"""

import asyncio
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from codebot.errors import SecondaryResolutionFailed
from codebot.models.outcome import Code, FinalOutcome, NotFound
from codebot.models.resolution import Credentials
from codebot.services.browser import BrowsingSession, PageFetcher
from codebot.services.code_patterns import find_code, is_valid_code
from codebot.services.session_store import SessionStore

logger = logging.getLogger(__name__)

OTP_SELECTOR = 'div[data-uia="travel-verification-otp"].challenge-code'


class SiteProfile(BaseModel):
    """Where and how to log in on the site that hosts verification pages."""

    model_config = ConfigDict(frozen=True)

    login_url: str = "https://www.netflix.com/login"
    landing_url: str = "https://www.netflix.com/browse"
    login_id_selector: str = 'input[name="userLoginId"]'
    password_selector: str = 'input[name="password"]'
    submit_selector: str = 'button[type="submit"]'
    login_titles: tuple[str, ...] = ("sign in", "login")


NETFLIX = SiteProfile()


class CodeTarget:
    """Locates the single element that holds the one-time code."""

    def __init__(self, selector: str = OTP_SELECTOR):
        self.selector = selector

    async def locate(self, browser: BrowsingSession) -> Optional[str]:
        """Return the element's text, or None when the element is absent."""
        return await browser.query_single(self.selector)


class SecondaryPageResolver:
    def __init__(
        self,
        fetcher: PageFetcher,
        sessions: SessionStore,
        site: SiteProfile = NETFLIX,
        code_target: Optional[CodeTarget] = None,
        timeout_seconds: float = 90.0,
    ):
        self.fetcher = fetcher
        self.sessions = sessions
        self.site = site
        self.code_target = code_target or CodeTarget()
        self.timeout_seconds = timeout_seconds

    async def resolve_from_url(
        self, url: str, credentials: Optional[Credentials] = None
    ) -> FinalOutcome:
        """Visit url and return Code or NotFound. Never raises."""
        try:
            return await asyncio.wait_for(
                self._resolve(url, credentials), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Verification page resolution timed out after {self.timeout_seconds}s"
            )
        except SecondaryResolutionFailed as exc:
            logger.error(f"Verification page resolution failed: {exc}")
        except Exception as exc:
            logger.error(f"Error extracting code from verification page: {exc}")
        return NotFound()

    async def _resolve(
        self, url: str, credentials: Optional[Credentials]
    ) -> FinalOutcome:
        async with self.fetcher.open() as browser:
            if credentials is None:
                logger.info("Navigating to verification URL (no authentication)")
            else:
                await self._ensure_session(browser, credentials)
                logger.info("Navigating to verification URL with authentication")

            await browser.goto(url)
            return await self._extract(browser)

    async def _ensure_session(
        self, browser: BrowsingSession, credentials: Credentials
    ) -> None:
        """
        Make browser authenticated, logging in at most once across all
        concurrent callers for the same account.
        """
        account = credentials.email
        async with self.sessions.lock_for(account):
            stored = await self.sessions.load(account)
            if stored is not None:
                await browser.apply_state(stored.storage_state)
                if await self._is_authenticated(browser):
                    logger.info("Reusing stored browser session")
                    return
                logger.info("Stored browser session is no longer valid")
                self.sessions.discard(account)

            await self._login(browser, credentials)
            await self.sessions.save(account, await browser.export_state())

    async def _is_authenticated(self, browser: BrowsingSession) -> bool:
        await browser.goto(self.site.landing_url)
        return not await self._on_login_page(browser)

    async def _on_login_page(self, browser: BrowsingSession) -> bool:
        if await browser.has_element(self.site.login_id_selector):
            return True
        title = (await browser.title() or "").casefold()
        return any(marker in title for marker in self.site.login_titles)

    async def _login(self, browser: BrowsingSession, credentials: Credentials) -> None:
        logger.info("Attempting site authentication")
        await browser.goto(self.site.login_url)
        await browser.fill(self.site.login_id_selector, credentials.email)
        await browser.fill(self.site.password_selector, credentials.password)
        await browser.submit(self.site.submit_selector)

        if await self._on_login_page(browser):
            raise SecondaryResolutionFailed("login was rejected")
        logger.info("Site authentication successful")

    async def _extract(self, browser: BrowsingSession) -> FinalOutcome:
        target_text = await self.code_target.locate(browser)
        if target_text is not None:
            candidate = target_text.strip()
            code = candidate if is_valid_code(candidate) else find_code(candidate)
            source = "code target element"
        else:
            code = find_code(await browser.text())
            source = "page text"

        if code:
            logger.info(f"Code found in {source}: {code}")
            return Code(value=code)

        logger.warning(f"No code found in verification page ({source})")
        return NotFound()
